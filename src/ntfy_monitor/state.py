"""
Last-check timestamps.

One plain text file per check type (``<state_dir>/<check_type>.state``)
holding a single ``YYYY-mm-dd HH:MM:SS`` timestamp.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from .utils import ensure_directory, get_timestamp, parse_timestamp, hours_ago

logger = logging.getLogger("ntfy_monitor.state")


class StateStore:
    """Reads and writes last-check timestamps."""

    def __init__(self, state_dir: Union[str, Path], default_lookback_hours: int = 1):
        self.state_dir = Path(state_dir)
        self.default_lookback_hours = default_lookback_hours

    def path_for(self, check_type: str) -> Path:
        return self.state_dir / f"{check_type}.state"

    def get_last_check(self, check_type: str, now: Optional[datetime] = None) -> datetime:
        """
        Time of the last completed check.

        Falls back to ``now - default_lookback_hours`` when the file is
        missing or unreadable.
        """
        state_file = self.path_for(check_type)
        default = hours_ago(self.default_lookback_hours, now)

        try:
            content = state_file.read_text(encoding='utf-8')
        except FileNotFoundError:
            logger.debug(f"No state for {check_type}, looking back "
                         f"{self.default_lookback_hours}h")
            return default
        except OSError as e:
            logger.warning(f"Cannot read {state_file}: {e}")
            return default

        last_check = parse_timestamp(content)
        if last_check is None:
            logger.warning(f"Invalid timestamp in {state_file}: {content.strip()!r}")
            return default
        return last_check

    def update_last_check(self, check_type: str, now: Optional[datetime] = None) -> None:
        ensure_directory(self.state_dir)
        self.path_for(check_type).write_text(get_timestamp(now) + "\n", encoding='utf-8')
