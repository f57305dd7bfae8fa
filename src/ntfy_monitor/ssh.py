"""
SSH transport for remote mode.

When ntfy-monitor runs away from the Proxmox node, ``pvesh``/``qm``/``pct``
are run on the node over one paramiko connection shared by all guest jobs.
"""

import logging
import threading
from pathlib import Path
from typing import Optional, Tuple

import paramiko

from .exceptions import SSHConnectionError, AuthenticationError
from .security import mask_password

logger = logging.getLogger("ntfy_monitor.ssh")


class SSHConnection:
    """Lazily connected client to one Proxmox node."""

    def __init__(self, host: str, port: int = 22, username: str = "root",
                 password: Optional[str] = None, key_file: Optional[str] = None,
                 timeout: int = 30):
        self.host = host
        self.port = port
        self.username = username
        self._password = password
        self.key_file = key_file
        self.timeout = timeout

        self._client: Optional[paramiko.SSHClient] = None
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, ssh_config: dict, host: Optional[str] = None) -> 'SSHConnection':
        """Build a connection from the ``ssh`` config section."""
        return cls(
            host=host or ssh_config.get('host', ''),
            port=int(ssh_config.get('port', 22)),
            username=ssh_config.get('username') or 'root',
            password=ssh_config.get('password') or None,
            key_file=ssh_config.get('key_file') or None,
        )

    def _connect_kwargs(self) -> dict:
        kwargs = {
            'hostname': self.host,
            'port': self.port,
            'username': self.username,
            'timeout': self.timeout,
        }
        if self.key_file:
            kwargs['key_filename'] = str(Path(self.key_file).expanduser())
        elif self._password:
            kwargs['password'] = self._password
            kwargs['allow_agent'] = False
            kwargs['look_for_keys'] = False
        return kwargs

    def _get_client(self) -> paramiko.SSHClient:
        with self._lock:
            if self._client is not None:
                transport = self._client.get_transport()
                if transport is not None and transport.is_active():
                    return self._client
                self._client.close()
                self._client = None

            client = paramiko.SSHClient()
            # Node keys come from the usual known_hosts; unknown keys are logged
            client.load_system_host_keys()
            client.set_missing_host_key_policy(paramiko.WarningPolicy())

            logger.info(f"Connecting to {self.username}@{self.host}:{self.port} "
                        f"(password: {mask_password(self._password)})")
            try:
                client.connect(**self._connect_kwargs())
            except paramiko.AuthenticationException as e:
                client.close()
                raise AuthenticationError(
                    f"Authentication failed for {self.username}@{self.host}",
                    host=self.host, username=self.username, details=str(e),
                )
            except (paramiko.SSHException, OSError) as e:
                client.close()
                raise SSHConnectionError("Failed to connect", host=self.host,
                                         port=self.port, details=str(e))

            self._client = client
            return client

    def execute(self, command: str, timeout: Optional[int] = None) -> Tuple[int, str, str]:
        """
        Run ``command`` on the node.

        Returns:
            (exit_code, stdout, stderr); output is decoded leniently.

        Raises:
            SSHConnectionError: Connection or channel failure.
        """
        client = self._get_client()
        try:
            stdin, stdout, stderr = client.exec_command(command, timeout=timeout or self.timeout)
            stdin.close()
            out = stdout.read()
            err = stderr.read()
            exit_code = stdout.channel.recv_exit_status()
        except (paramiko.SSHException, OSError) as e:
            raise SSHConnectionError("Command execution failed", host=self.host,
                                     port=self.port, details=str(e))
        return (exit_code,
                out.decode('utf-8', errors='replace'),
                err.decode('utf-8', errors='replace'))

    def close(self) -> None:
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None
                logger.debug(f"Disconnected from {self.host}")
