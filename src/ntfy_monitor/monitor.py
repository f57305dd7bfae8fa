"""
Monitoring run orchestration.

Enumerates running guests and runs their checks on a bounded worker pool:
one job per guest, checks inside a job run sequentially (network, then logs).
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Optional, List, Dict, Any

from .checks import NetworkCheck, LogCheck
from .cluster import ClusterClient, Guest
from .config import Config
from .exceptions import DependencyError
from .guest import GuestShell
from .notifier import NtfyNotifier
from .state import StateStore

logger = logging.getLogger("ntfy_monitor.monitor")


REQUIRED_TOOLS = ["pvesh", "qm", "pct"]
LOG_STATE = "guest_logs"


def check_dependencies(executor, tools: Optional[List[str]] = None) -> None:
    """
    Verify the Proxmox tool chain is present where commands will run.

    Raises:
        DependencyError: Listing every missing tool.
    """
    missing = [tool for tool in (tools or REQUIRED_TOOLS) if not executor.which(tool)]
    if missing:
        raise DependencyError(missing, details=executor.describe())


class Monitor:
    """One monitoring pass over the cluster."""

    def __init__(
        self,
        config: Config,
        executor,
        notifier: NtfyNotifier,
        check_network: bool = True,
        check_logs: bool = True,
        cluster: Optional[ClusterClient] = None,
        state: Optional[StateStore] = None,
    ):
        self.config = config
        self.executor = executor
        self.notifier = notifier
        self.check_network = check_network
        self.check_logs = check_logs

        timeout = int(config.get('system.guest_timeout', 30))
        self.max_workers = int(config.get('system.max_parallel_jobs', 10))

        self.cluster = cluster or ClusterClient(executor, timeout=timeout)
        self.shell = GuestShell(executor, timeout=timeout)
        self.state = state or StateStore(
            config.state_dir,
            default_lookback_hours=int(config.get('checks.log_interval_hours', 1)),
        )
        self.network_check = NetworkCheck(self.shell, notifier, config.checks)
        self.log_check = LogCheck(self.shell, notifier, config.checks)

    def prepare_guest(self, guest: Guest) -> None:
        """Fill in agent availability and OS family."""
        guest.agent_available = self.shell.agent_ping(guest)
        guest.is_windows = self.shell.detect_windows(guest, self.cluster)
        if guest.is_windows:
            logger.debug(f"{guest.label} ({guest.name}) is a Windows guest")

    def check_guest(self, guest: Guest, since: datetime) -> bool:
        """Run the selected checks for one guest. True when all passed."""
        self.prepare_guest(guest)

        healthy = True
        if self.check_network:
            healthy = self.network_check.run(guest) and healthy
        if self.check_logs:
            healthy = self.log_check.run(guest, since) and healthy
        return healthy

    def run(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Check every running guest.

        The log state is stamped with the start of the run (``now``), so
        lines written while jobs are in flight are seen again next time.

        Raises:
            ClusterQueryError: If the guests cannot be enumerated.

        Returns:
            Summary counts: guests, healthy, unhealthy, failed.
        """
        started = now or datetime.now()

        logger.info("Querying cluster resources...")
        guests = self.cluster.get_running_guests()

        since = self.state.get_last_check(LOG_STATE, now=started)
        summary = {'guests': len(guests), 'healthy': 0, 'unhealthy': 0, 'failed': 0}

        logger.info(f"Processing {len(guests)} guests "
                    f"(max {self.max_workers} parallel jobs)...")

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {
                pool.submit(self.check_guest, guest, since): guest
                for guest in guests
            }

            for future in as_completed(futures):
                guest = futures[future]
                try:
                    healthy = future.result()
                except Exception:
                    logger.exception(f"Error checking {guest.label} ({guest.name})")
                    summary['failed'] += 1
                    continue
                summary['healthy' if healthy else 'unhealthy'] += 1

        if self.check_logs:
            self.state.update_last_check(LOG_STATE, now=started)

        logger.info(
            f"Checked {summary['guests']} guests: {summary['healthy']} healthy, "
            f"{summary['unhealthy']} with alerts, {summary['failed']} failed"
        )
        return summary
