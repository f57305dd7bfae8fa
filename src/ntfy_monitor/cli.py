"""
Command-line interface for ntfy-monitor.

Provides argument parsing and main entry point.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, List

from . import __version__
from .config import Config, DEFAULT_CONFIG_FILE
from .exceptions import (
    NtfyMonitorError,
    ConfigurationError,
    DependencyError,
    LockError,
    ClusterQueryError,
)
from .executor import create_executor
from .monitor import Monitor, check_dependencies
from .notifier import NtfyNotifier
from .ssh import SSHConnection
from .utils import file_lock, ensure_directory

logger = logging.getLogger("ntfy_monitor")


def setup_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """
    Configure logging.

    The console follows ``level``; the log file always records INFO and
    above.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        log_file: Optional log file path.
    """
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    console_level = getattr(logging, level.upper(), logging.INFO)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(console_level)
    handlers = [console]

    file_error = None
    if log_file:
        try:
            ensure_directory(log_file.parent)
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(max(console_level, logging.INFO))
            handlers.append(file_handler)
        except OSError as e:
            file_error = e

    logging.basicConfig(
        level=min(h.level for h in handlers),
        format=log_format,
        handlers=handlers,
        force=True,
    )

    if file_error:
        logger.warning(f"Cannot write log file {log_file}: {file_error}")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description=f"ntfy-monitor v{__version__} - Proxmox guest network and log monitor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s
  %(prog)s --debug --network
  %(prog)s --config /etc/ntfy-monitor.json --host pve1.example.com
  %(prog)s --config /etc/ntfy-monitor.json --encrypt-config
        """
    )

    parser.add_argument(
        '--config', '-c',
        help=f'Configuration file path (default: {DEFAULT_CONFIG_FILE}, optional)'
    )

    # Subsystem selection
    parser.add_argument(
        '--network',
        action='store_true',
        help='Run guest network checks (default: all checks)'
    )
    parser.add_argument(
        '--logs',
        action='store_true',
        help='Run guest log checks (default: all checks)'
    )

    parser.add_argument(
        '--host', '-H',
        help='Run the Proxmox tools on this node over SSH (credentials from the ssh config section)'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Log notifications instead of sending them'
    )
    parser.add_argument(
        '--encrypt-config',
        action='store_true',
        help='Encrypt password fields of the JSON config file and exit'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )
    parser.add_argument(
        '--version', '-v',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    return parser.parse_args(argv)


def encrypt_config(config: Config) -> int:
    try:
        config.encrypt_credentials()
    except NtfyMonitorError as e:
        logger.error(f"Cannot encrypt configuration: {e}")
        return 1
    return 0


def build_executor(args: argparse.Namespace, config: Config):
    timeout = int(config.get('system.guest_timeout', 30))
    if args.host or config.ssh.get('enabled'):
        connection = SSHConnection.from_config(config.ssh, host=args.host)
        return create_executor(connection, timeout=timeout)
    return create_executor(timeout=timeout)


def run(args: argparse.Namespace, config: Config) -> int:
    """
    Main execution logic.

    Returns:
        Exit code (0 = success).
    """
    logger.info("Starting monitoring for running VMs and CTs...")

    try:
        config.validate()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    executor = build_executor(args, config)
    try:
        check_dependencies(executor)

        run_network = args.network or not args.logs
        run_logs = args.logs or not args.network

        notifier = NtfyNotifier.from_config(config.ntfy, dry_run=args.dry_run)

        with file_lock(config.lock_file):
            monitor = Monitor(
                config,
                executor,
                notifier,
                check_network=run_network,
                check_logs=run_logs,
            )
            monitor.run()

    except LockError:
        logger.error("Another instance is running")
        return 1
    except DependencyError as e:
        logger.error(str(e))
        return 1
    except ClusterQueryError as e:
        logger.error(f"ERROR: Failed to query resources. Ensure pvesh is available "
                     f"and run as root. ({e})")
        return 1
    finally:
        executor.close()

    logger.info("Monitoring completed.")
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    args = parse_args(argv)

    try:
        config = Config(args.config or DEFAULT_CONFIG_FILE, required=bool(args.config))
    except ConfigurationError as e:
        setup_logging(level="INFO")
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    debug = args.debug or config.debug
    log_level = "DEBUG" if debug else config.get('system.log_level', 'INFO')
    setup_logging(level=log_level, log_file=config.error_log_file)

    if args.encrypt_config:
        sys.exit(encrypt_config(config))

    try:
        exit_code = run(args, config)
    except Exception:
        logger.exception("Unexpected error")
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
