"""
Utility functions for ntfy-monitor.

Provides common helper functions used across the application.
"""

import os
import re
import fcntl
import socket
import logging
from pathlib import Path
from datetime import datetime, timedelta
from typing import Optional, Any, Union
from contextlib import contextmanager

from .exceptions import LockError

logger = logging.getLogger("ntfy_monitor.utils")


TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


# ============================================================================
# NUMERIC UTILITIES
# ============================================================================

def safe_int(value: Any, default: int = 0) -> int:
    """
    Safely convert a value to int.

    Args:
        value: Value to convert.
        default: Default value if conversion fails.

    Returns:
        Integer value or default.
    """
    if value is None:
        return default
    try:
        return int(value)
    except (ValueError, TypeError):
        return default


def parse_bool(value: Any) -> bool:
    """Interpret config-style booleans ("true", "1", "yes", True)."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in ("1", "true", "yes", "on")


# ============================================================================
# STRING UTILITIES
# ============================================================================

def clean_string(value: Any, default: str = "") -> str:
    """
    Clean a string value, handling None and whitespace.

    Args:
        value: Value to clean.
        default: Default if value is None/empty.

    Returns:
        Cleaned string.
    """
    if value is None:
        return default
    result = str(value).strip()
    return result if result else default


def truncate_string(value: str, max_length: int, suffix: str = "...") -> str:
    """
    Truncate a string to max length with suffix.

    Args:
        value: String to truncate.
        max_length: Maximum length including suffix.
        suffix: Suffix to add when truncating.

    Returns:
        Truncated string.
    """
    if len(value) <= max_length:
        return value
    return value[:max_length - len(suffix)] + suffix


def sanitize_topic(topic: str) -> str:
    """
    Normalize a notification topic suffix.

    Lower-cases the value and drops everything outside ``[a-z0-9_-]``.
    """
    return re.sub(r'[^a-z0-9_-]', '', (topic or '').lower())


def split_list(value: Any) -> list:
    """Accept a list or a whitespace/comma separated string."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    return [part for part in re.split(r'[\s,]+', str(value)) if part]


# ============================================================================
# TIME UTILITIES
# ============================================================================

def get_timestamp(now: Optional[datetime] = None) -> str:
    """Return a ``YYYY-mm-dd HH:MM:SS`` timestamp (local time)."""
    return (now or datetime.now()).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse a timestamp written by :func:`get_timestamp`."""
    try:
        return datetime.strptime(value.strip(), TIMESTAMP_FORMAT)
    except (ValueError, AttributeError):
        return None


def hours_ago(hours: float, now: Optional[datetime] = None) -> datetime:
    """Return the local time ``hours`` before ``now``."""
    return (now or datetime.now()) - timedelta(hours=hours)


# ============================================================================
# FILE LOCKING
# ============================================================================

@contextmanager
def file_lock(lock_path: Union[str, Path]):
    """
    Context manager for exclusive, non-blocking file locking.

    The PID of the holder is written into the lock file.

    Args:
        lock_path: Path to the lock file.

    Yields:
        The lock file object.

    Raises:
        LockError: If lock cannot be acquired.
    """
    lock_path = Path(lock_path)
    lock_fd = None

    try:
        ensure_directory(lock_path.parent)
        lock_fd = open(lock_path, 'a+')

        try:
            fcntl.flock(lock_fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            raise LockError(
                f"Could not acquire lock on {lock_path}. "
                "Another instance is running."
            )

        lock_fd.seek(0)
        lock_fd.truncate()
        lock_fd.write(f"{os.getpid()}\n")
        lock_fd.flush()

        yield lock_fd

    finally:
        if lock_fd:
            try:
                fcntl.flock(lock_fd.fileno(), fcntl.LOCK_UN)
            except OSError as e:
                logger.debug(f"Failed to unlock {lock_path}: {e}")
            lock_fd.close()


# ============================================================================
# NETWORK UTILITIES
# ============================================================================

def get_hostname() -> str:
    """Get the local hostname."""
    try:
        return socket.gethostname()
    except OSError:
        return "unknown"


# ============================================================================
# DIRECTORY UTILITIES
# ============================================================================

def ensure_directory(path: Union[str, Path], mode: int = 0o755) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path.
        mode: Permission mode for created directories.

    Returns:
        Path object.
    """
    path = Path(path)
    if not path.exists():
        path.mkdir(parents=True, exist_ok=True)
        try:
            path.chmod(mode)
        except OSError:
            pass
    return path
