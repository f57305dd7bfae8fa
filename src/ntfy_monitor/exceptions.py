"""
Custom exceptions for ntfy-monitor.

Failures that abort a run (configuration, dependencies, lock, cluster query)
and failures reported per guest share one hierarchy.
"""

from typing import Optional, Any, List


class NtfyMonitorError(Exception):
    """Base exception for all ntfy-monitor errors."""

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (details: {self.details})"
        return self.message


class ConfigurationError(NtfyMonitorError):
    """Raised when there's a configuration problem."""
    pass


class DependencyError(NtfyMonitorError):
    """Raised when required host tools are missing."""

    def __init__(self, missing: List[str], details: Optional[Any] = None):
        super().__init__(
            f"Missing required dependencies: {' '.join(missing)}", details
        )
        self.missing = list(missing)


class LockError(NtfyMonitorError):
    """Raised when file locking fails."""
    pass


class CommandError(NtfyMonitorError):
    """Raised when a command cannot be executed."""

    def __init__(self, message: str, command: Optional[str] = None,
                 exit_code: Optional[int] = None, details: Optional[Any] = None):
        super().__init__(message, details)
        self.command = command
        self.exit_code = exit_code


class SSHConnectionError(CommandError):
    """Raised when the SSH connection to a node fails."""

    def __init__(self, message: str, host: Optional[str] = None,
                 port: Optional[int] = None, details: Optional[Any] = None):
        super().__init__(message, details=details)
        self.host = host
        self.port = port

    def __str__(self) -> str:
        location = ""
        if self.host:
            location = f" to {self.host}"
            if self.port:
                location += f":{self.port}"
        return f"{self.message}{location}"


class AuthenticationError(SSHConnectionError):
    """Raised when SSH authentication fails."""

    def __init__(self, message: str, host: Optional[str] = None,
                 username: Optional[str] = None, details: Optional[Any] = None):
        super().__init__(message, host, details=details)
        self.username = username


class ClusterQueryError(NtfyMonitorError):
    """Raised when the cluster resource query fails."""
    pass


class NotificationError(NtfyMonitorError):
    """Raised when a push notification cannot be delivered."""

    def __init__(self, message: str, topic: Optional[str] = None,
                 status: Optional[int] = None, details: Optional[Any] = None):
        super().__init__(message, details)
        self.topic = topic
        self.status = status


class EncryptionError(NtfyMonitorError):
    """Raised when encryption/decryption fails."""
    pass


class DecryptionError(EncryptionError):
    """Raised when decryption specifically fails."""
    pass
