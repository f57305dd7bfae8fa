"""
Command execution for ntfy-monitor.

All external tools (pvesh, qm, pct) are invoked through an executor so the
same checks run on the Proxmox node itself or over SSH.
"""

import shlex
import shutil
import logging
import subprocess
from typing import Optional, List, NamedTuple

from .exceptions import SSHConnectionError
from .ssh import SSHConnection

logger = logging.getLogger("ntfy_monitor.executor")


# Conventional shell exit codes for conditions detected before/around exec
EXIT_TIMEOUT = 124
EXIT_NOT_FOUND = 127
EXIT_CONNECTION = 255


class CommandResult(NamedTuple):
    """Outcome of one command."""

    exit_code: int
    stdout: str
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        """stdout and stderr combined, like ``2>&1``."""
        if self.stdout and self.stderr:
            return f"{self.stdout.rstrip()}\n{self.stderr.rstrip()}"
        return (self.stdout or self.stderr).strip()


class LocalExecutor:
    """Run commands on this host with subprocess."""

    DEFAULT_TIMEOUT = 30

    def __init__(self, timeout: int = DEFAULT_TIMEOUT):
        self.timeout = timeout

    def run(self, argv: List[str], timeout: Optional[int] = None) -> CommandResult:
        timeout = timeout or self.timeout
        logger.debug(f"exec: {shlex.join(argv)}")
        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(
                EXIT_TIMEOUT, "", f"Command timed out after {timeout}s"
            )
        except FileNotFoundError:
            return CommandResult(EXIT_NOT_FOUND, "", f"{argv[0]}: command not found")
        return CommandResult(result.returncode, result.stdout, result.stderr)

    def which(self, tool: str) -> bool:
        return shutil.which(tool) is not None

    def close(self) -> None:
        pass

    def describe(self) -> str:
        return "local"


class SSHExecutor:
    """Run commands on a remote node over one shared SSH connection."""

    def __init__(self, connection: SSHConnection, timeout: int = LocalExecutor.DEFAULT_TIMEOUT):
        self.connection = connection
        self.timeout = timeout

    def run(self, argv: List[str], timeout: Optional[int] = None) -> CommandResult:
        command = shlex.join(argv)
        logger.debug(f"exec ({self.connection.host}): {command}")
        try:
            exit_code, stdout, stderr = self.connection.execute(
                command, timeout=timeout or self.timeout
            )
        except SSHConnectionError as e:
            logger.warning(f"SSH execution failed for '{command}': {e}")
            return CommandResult(EXIT_CONNECTION, "", str(e))
        return CommandResult(exit_code, stdout, stderr)

    def which(self, tool: str) -> bool:
        result = self.run(["sh", "-c", f"command -v {shlex.quote(tool)}"])
        return result.ok and bool(result.stdout.strip())

    def close(self) -> None:
        self.connection.close()

    def describe(self) -> str:
        return f"ssh://{self.connection.username}@{self.connection.host}:{self.connection.port}"


def create_executor(
    ssh_connection: Optional[SSHConnection] = None,
    timeout: int = LocalExecutor.DEFAULT_TIMEOUT,
):
    """
    Create a command executor.

    Args:
        ssh_connection: SSH connection for remote execution.
        timeout: Default per-command timeout in seconds.

    Returns:
        LocalExecutor when no connection is given, SSHExecutor otherwise.
    """
    if ssh_connection is None:
        return LocalExecutor(timeout=timeout)
    return SSHExecutor(ssh_connection, timeout=timeout)
