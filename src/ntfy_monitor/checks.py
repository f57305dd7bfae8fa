"""
Per-guest checks.

NetworkCheck: ping a list of targets (first success wins) and resolve a
hostname with nslookup. LogCheck: grep the guest's syslog for error patterns
and report lines newer than the last run.

Every problem, including infrastructure ones (agent down, tool missing, log
unreadable), is reported through the notifier. Checks return True when the
guest was found healthy.
"""

import re
import time
import logging
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any, Callable, Tuple

from .cluster import Guest
from .guest import GuestShell
from .notifier import NtfyNotifier, Priority

logger = logging.getLogger("ntfy_monitor.checks")


NETWORK_TOPIC = "guest-network"
LOGS_TOPIC = "guest-logs"

PING_RECEIVED = re.compile(r'[1-9][0-9]* (packets )?received')
WINDOWS_PING_REPLY = "Reply from"

# Syslog stamps carry no year; only stamps further ahead than this are last year
CLOCK_SKEW = timedelta(days=1)

MONTHS = {
    'Jan': 1, 'Feb': 2, 'Mar': 3, 'Apr': 4, 'May': 5, 'Jun': 6,
    'Jul': 7, 'Aug': 8, 'Sep': 9, 'Oct': 10, 'Nov': 11, 'Dec': 12,
}
SYSLOG_TIMESTAMP = re.compile(
    r'^([A-Z][a-z]{2})\s+(\d{1,2})\s+(\d{2}):(\d{2}):(\d{2})\b'
)
ISO_TIMESTAMP = re.compile(
    r'^(\d{4}-\d{2}-\d{2})[T ](\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:?\d{2})?'
)


def parse_log_timestamp(line: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Leading timestamp of a log line as naive local time.

    Understands classic syslog (``May  1 12:00:01``, year assumed current,
    or previous when that lands more than a day ahead) and ISO-8601 as written by
    rsyslog's high-precision format. Returns None otherwise.
    """
    now = now or datetime.now()

    match = SYSLOG_TIMESTAMP.match(line)
    if match:
        month = MONTHS.get(match.group(1))
        if month is None:
            return None
        day, hour, minute, second = (int(g) for g in match.groups()[1:])
        for year in (now.year, now.year - 1):
            try:
                stamp = datetime(year, month, day, hour, minute, second)
            except ValueError:
                continue
            if stamp <= now + CLOCK_SKEW:
                return stamp
        return None

    match = ISO_TIMESTAMP.match(line)
    if match:
        date_part, time_part, fraction, offset = match.groups()
        text = f"{date_part}T{time_part}"
        if fraction:
            text += "." + fraction[:6].ljust(6, "0")
        if offset:
            if offset == "Z":
                offset = "+00:00"
            elif ":" not in offset:
                offset = f"{offset[:3]}:{offset[3:]}"
            text += offset
        try:
            stamp = datetime.fromisoformat(text)
        except ValueError:
            return None
        if stamp.tzinfo is not None:
            stamp = stamp.astimezone().replace(tzinfo=None)
        return stamp

    return None


def filter_lines_since(lines: List[str], since: datetime,
                       now: Optional[datetime] = None) -> List[str]:
    """Lines whose timestamp is strictly newer than ``since``."""
    recent = []
    for line in lines:
        stamp = parse_log_timestamp(line, now)
        if stamp is not None and stamp > since:
            recent.append(line)
    return recent


class GuestCheck:
    """Shared plumbing for checks that notify on one topic."""

    topic = ""

    def __init__(self, shell: GuestShell, notifier: NtfyNotifier, settings: Dict[str, Any]):
        self.shell = shell
        self.notifier = notifier
        self.settings = settings

    def notify(self, guest: Guest, priority: str, title: str, detail: str,
               level: str = "error") -> None:
        self.notifier.send(
            priority,
            f"{guest.label} {title}",
            f"{guest.label} ({guest.name}): {detail}",
            self.topic,
            f"{level},{guest.tags}",
        )

    def require_agent(self, guest: Guest) -> bool:
        if guest.agent_available:
            return True
        logger.debug(f"  {guest.label}: QEMU Guest Agent unavailable - skipping checks.")
        self.notify(guest, Priority.URGENT, "Agent Unavailable",
                    "QEMU Guest Agent unavailable.")
        return False

    def require_tools(self, guest: Guest, tools: List[str]) -> bool:
        for tool in tools:
            if not self.shell.has_tool(guest, tool):
                logger.error(f"{guest.label}: {tool} not found")
                self.notify(guest, Priority.URGENT, "Tool Missing", f"{tool} not found.")
                return False
        return True


class NetworkCheck(GuestCheck):
    """Outbound reachability (ping) and DNS resolution (nslookup)."""

    topic = NETWORK_TOPIC

    def __init__(self, shell: GuestShell, notifier: NtfyNotifier, settings: Dict[str, Any],
                 sleep: Callable[[float], None] = time.sleep):
        super().__init__(shell, notifier, settings)
        self.sleep = sleep

    def run(self, guest: Guest) -> bool:
        logger.debug(f"Checking network of {guest.label} ({guest.name}) on node {guest.node}...")

        if guest.is_vm and not self.require_agent(guest):
            return False

        # Windows ships ping and nslookup; there is no sh to look them up with
        if not guest.is_windows and not self.require_tools(guest, ["ping", "nslookup"]):
            return False

        healthy = self.check_ping(guest)
        return self.check_dns(guest) and healthy

    def ping_target(self, guest: Guest, target: str) -> Tuple[bool, str]:
        count = int(self.settings['ping_retry_count'])
        timeout = int(self.settings['ping_timeout'])

        if guest.is_windows:
            output = ""
            for attempt in range(1, count + 1):
                result = self.shell.run(
                    guest, ["cmd", "/c", "ping", "-n", "1", "-w", str(timeout * 1000), target]
                )
                output = result.output
                if result.ok and WINDOWS_PING_REPLY in result.stdout:
                    return True, output
                logger.debug(f"  {guest.label}: Ping attempt {attempt} to {target} failed - {output}")
                if attempt < count:
                    self.sleep(1)
            return False, output

        result = self.shell.run(
            guest, ["ping", "-c", str(count), "-W", str(timeout), target],
            timeout=count * timeout + self.shell.timeout,
        )
        return result.ok and bool(PING_RECEIVED.search(result.stdout)), result.output

    def check_ping(self, guest: Guest) -> bool:
        targets = self.settings['ping_targets']
        last_output = ""

        for target in targets:
            logger.debug(f"  {guest.label}: Pinging {target}...")
            success, last_output = self.ping_target(guest, target)
            if success:
                logger.debug(f"  {guest.label}: Ping SUCCESS to {target}")
                return True
            logger.debug(f"  {guest.label}: Ping to {target} failed - {last_output}")

        target_list = " ".join(targets)
        logger.debug(f"  {guest.label}: Ping FAILED to all targets ({target_list})")
        self.notify(guest, Priority.URGENT, "Ping Failed",
                    f"Ping to all targets ({target_list}) failed - {last_output}")
        return False

    def check_dns(self, guest: Guest) -> bool:
        target = self.settings['nslookup_target']
        argv = ["nslookup", target]
        if guest.is_windows:
            argv = ["cmd", "/c"] + argv

        result = self.shell.run(guest, argv)
        if result.ok and re.search(rf"Name:.*{re.escape(target)}", result.stdout):
            logger.debug(f"  {guest.label}: Nslookup SUCCESS")
            return True

        logger.debug(f"  {guest.label}: Nslookup FAILED - {result.output}")
        self.notify(guest, Priority.URGENT, "Nslookup Failed",
                    f"Nslookup of {target} failed - {result.output}")
        return False


class LogCheck(GuestCheck):
    """Error patterns in the guest's syslog since the previous run."""

    topic = LOGS_TOPIC

    def run(self, guest: Guest, since: datetime, now: Optional[datetime] = None) -> bool:
        logger.debug(f"Checking logs for {guest.label} ({guest.name}) on node {guest.node}...")

        if guest.is_windows:
            logger.debug(f"  {guest.label}: Windows guest - log checking not supported.")
            self.notify(guest, Priority.DEFAULT, "Skipped",
                        "Windows guest - log checking not supported.", level="warning")
            return True

        if guest.is_vm and not self.require_agent(guest):
            return False

        if not self.require_tools(guest, ["grep", "awk"]):
            return False

        log_files = self.settings['log_files']
        log_file = self.find_log_file(guest, log_files)
        if log_file is None:
            listing = " ".join(log_files)
            logger.debug(f"  {guest.label}: No supported log file found ({listing}).")
            self.notify(guest, Priority.URGENT, "Log Missing",
                        f"No supported log file found ({listing}).")
            return False

        logger.debug(f"  {guest.label}: Checking {log_file} since {since:%Y-%m-%d %H:%M:%S}...")

        result = self.shell.run(
            guest, ["grep", "-i", "-E", self.settings['error_patterns'], log_file]
        )
        # grep exits 1 when nothing matched
        if result.exit_code == 1 and not result.stderr.strip():
            logger.debug(f"  {guest.label}: No error patterns in {log_file}.")
            return True
        if not result.ok:
            logger.debug(f"  {guest.label}: Failed to read logs - {result.output}")
            self.notify(guest, Priority.URGENT, "Log Access Error",
                        f"Failed to read {log_file} - {result.output}")
            return False

        errors = filter_lines_since(result.stdout.splitlines(), since, now)
        if not errors:
            logger.debug(f"  {guest.label}: No issues found in logs since {since:%Y-%m-%d %H:%M:%S}.")
            return True

        logger.debug(f"  {guest.label}: Issues found in logs since {since:%Y-%m-%d %H:%M:%S}.")
        self.notifier.send(
            Priority.URGENT,
            f"{guest.label} Log Issues",
            f"Issues in {guest.label} ({guest.name}) logs ({log_file}, "
            f"{len(errors)} errors):\n" + "\n".join(errors),
            self.topic,
            f"warning,{guest.tags}",
        )
        return False

    def find_log_file(self, guest: Guest, candidates: List[str]) -> Optional[str]:
        for path in candidates:
            if self.shell.file_exists(guest, path):
                return path
        return None
