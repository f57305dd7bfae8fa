"""
Tests for the per-guest network and log checks.
"""

import pytest
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import Mock

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from conftest import FakeExecutor, guest_argv
from ntfy_monitor.checks import (
    NetworkCheck,
    LogCheck,
    NETWORK_TOPIC,
    LOGS_TOPIC,
    parse_log_timestamp,
    filter_lines_since,
)
from ntfy_monitor.cluster import Guest
from ntfy_monitor.executor import CommandResult
from ntfy_monitor.guest import GuestShell
from ntfy_monitor.notifier import Priority


NOW = datetime(2024, 5, 1, 12, 0, 0)
SINCE = datetime(2024, 5, 1, 11, 0, 0)

PING_OK = "2 packets transmitted, 2 received, 0% packet loss, time 1001ms"
PING_LOST = "2 packets transmitted, 0 received, 100% packet loss, time 1001ms"
NSLOOKUP_OK = "Server:\t\t1.1.1.1\n\nName:\tgoogle.com\nAddress: 142.250.74.46\n"


def linux_guest(tools=("ping", "nslookup", "grep", "awk"), ping=None, dns=None,
                files=("/var/log/syslog",), grep=None):
    """Handler emulating a Linux guest reached through pct exec."""
    ping = ping or {}
    grep = grep or CommandResult(1, "", "")

    def handler(argv):
        cmd = guest_argv(argv)
        if cmd[:2] == ["sh", "-c"]:
            tool = cmd[2].split()[-1]
            if tool in tools:
                return CommandResult(0, f"/usr/bin/{tool}\n")
            return CommandResult(1, "")
        if cmd[0] == "ping":
            return ping.get(cmd[-1], CommandResult(0, PING_OK))
        if cmd[0] == "nslookup":
            return dns or CommandResult(0, NSLOOKUP_OK)
        if cmd[:2] == ["test", "-f"]:
            return CommandResult(0 if cmd[2] in files else 1, "")
        if cmd[0] == "grep":
            return grep
        return None

    return handler


def make_check(check_class, handler, settings, **kwargs):
    executor = FakeExecutor(handler)
    notifier = Mock()
    check = check_class(GuestShell(executor, timeout=30), notifier, settings, **kwargs)
    return check, executor, notifier


def sent(notifier):
    """(priority, title, message, topic, tags) of every notification."""
    return [c.args for c in notifier.send.call_args_list]


@pytest.fixture
def ct():
    return Guest(200, "pve1", "web", "ct")


class TestNetworkCheck:
    """Tests for ping and nslookup checks."""

    def test_healthy_guest(self, ct, check_settings):
        check, executor, notifier = make_check(NetworkCheck, linux_guest(), check_settings)

        assert check.run(ct) is True
        notifier.send.assert_not_called()
        assert ["pct", "exec", "200", "--", "ping", "-c", "2", "-W", "5", "8.8.8.8"] in executor.calls

    def test_first_successful_target_wins(self, ct, check_settings):
        handler = linux_guest(ping={"8.8.8.8": CommandResult(1, PING_LOST)})
        check, executor, notifier = make_check(NetworkCheck, handler, check_settings)

        assert check.run(ct) is True
        pinged = [guest_argv(c)[-1] for c in executor.calls if guest_argv(c)[0] == "ping"]
        assert pinged == ["8.8.8.8", "1.1.1.1"]

    def test_ping_failed(self, ct, check_settings):
        handler = linux_guest(ping={
            "8.8.8.8": CommandResult(1, PING_LOST),
            "1.1.1.1": CommandResult(2, "", "ping: connect: Network is unreachable"),
        })
        check, _, notifier = make_check(NetworkCheck, handler, check_settings)

        assert check.run(ct) is False

        (priority, title, message, topic, tags), = sent(notifier)
        assert priority == Priority.URGENT
        assert title == "ct 200 Ping Failed"
        assert message.startswith("ct 200 (web): Ping to all targets (8.8.8.8 1.1.1.1) failed")
        assert "Network is unreachable" in message
        assert topic == NETWORK_TOPIC
        assert tags == "error,ct,web"

    def test_zero_received_is_failure(self, ct, check_settings):
        handler = linux_guest(ping={
            "8.8.8.8": CommandResult(0, PING_LOST),
            "1.1.1.1": CommandResult(0, PING_LOST),
        })
        check, _, notifier = make_check(NetworkCheck, handler, check_settings)

        assert check.check_ping(ct) is False
        assert sent(notifier)[0][1] == "ct 200 Ping Failed"

    def test_nslookup_failed(self, ct, check_settings):
        handler = linux_guest(dns=CommandResult(1, ";; connection timed out; no servers could be reached"))
        check, _, notifier = make_check(NetworkCheck, handler, check_settings)

        assert check.run(ct) is False

        (priority, title, message, topic, _), = sent(notifier)
        assert title == "ct 200 Nslookup Failed"
        assert "no servers could be reached" in message
        assert topic == NETWORK_TOPIC

    def test_nslookup_answer_must_name_target(self, ct, check_settings):
        handler = linux_guest(dns=CommandResult(0, "Name:\texample.org\n"))
        check, _, notifier = make_check(NetworkCheck, handler, check_settings)

        assert check.check_dns(ct) is False

    def test_tool_missing(self, ct, check_settings):
        check, executor, notifier = make_check(
            NetworkCheck, linux_guest(tools=("ping",)), check_settings
        )

        assert check.run(ct) is False

        (priority, title, message, _, _), = sent(notifier)
        assert priority == Priority.URGENT
        assert title == "ct 200 Tool Missing"
        assert message == "ct 200 (web): nslookup not found."
        assert not any(guest_argv(c)[0] == "ping" for c in executor.calls)

    def test_vm_without_agent(self, check_settings):
        vm = Guest(101, "pve1", "db", "vm", agent_available=False)
        check, executor, notifier = make_check(NetworkCheck, linux_guest(), check_settings)

        assert check.run(vm) is False

        (priority, title, message, topic, tags), = sent(notifier)
        assert priority == Priority.URGENT
        assert title == "vm 101 Agent Unavailable"
        assert tags == "error,vm,db"
        assert executor.calls == []

    def test_vm_commands_go_through_agent(self, check_settings):
        vm = Guest(101, "pve1", "db", "vm")

        def handler(argv):
            result = linux_guest()(argv)
            if result is None:
                return None
            return CommandResult(0, json.dumps({
                "exitcode": result.exit_code, "exited": 1, "out-data": result.stdout,
            }))

        check, executor, notifier = make_check(NetworkCheck, handler, check_settings)

        assert check.run(vm) is True
        assert executor.calls[0][:7] == ["qm", "guest", "exec", "101", "--timeout", "30", "--"]

    def test_windows_ping_retries(self, check_settings):
        vm = Guest(101, "pve1", "win", "vm", is_windows=True)
        sleeps = []

        def handler(argv):
            cmd = guest_argv(argv)
            if cmd[:3] == ["cmd", "/c", "ping"]:
                out = "Request timed out."
            else:
                out = "Name:    google.com\r\nAddress:  142.250.74.46\r\n"
            return CommandResult(0, json.dumps({"exitcode": 0, "exited": 1, "out-data": out}))

        check, executor, notifier = make_check(
            NetworkCheck, handler, check_settings, sleep=sleeps.append
        )

        assert check.run(vm) is False

        pings = [guest_argv(c) for c in executor.calls if guest_argv(c)[:3] == ["cmd", "/c", "ping"]]
        assert len(pings) == 4
        assert pings[0] == ["cmd", "/c", "ping", "-n", "1", "-w", "5000", "8.8.8.8"]
        assert sleeps == [1, 1]
        assert [args[1] for args in sent(notifier)] == ["vm 101 Ping Failed"]

    def test_windows_ping_reply(self, check_settings):
        vm = Guest(101, "pve1", "win", "vm", is_windows=True)

        def handler(argv):
            cmd = guest_argv(argv)
            if cmd[:3] == ["cmd", "/c", "ping"]:
                out = "Reply from 8.8.8.8: bytes=32 time=12ms TTL=117"
            else:
                out = "Name:    google.com\r\n"
            return CommandResult(0, json.dumps({"exitcode": 0, "exited": 1, "out-data": out}))

        check, _, notifier = make_check(NetworkCheck, handler, check_settings)

        assert check.run(vm) is True
        notifier.send.assert_not_called()


class TestLogCheck:
    """Tests for the syslog error scan."""

    def test_no_matches(self, ct, check_settings):
        check, _, notifier = make_check(LogCheck, linux_guest(), check_settings)

        assert check.run(ct, SINCE, now=NOW) is True
        notifier.send.assert_not_called()

    def test_reports_only_recent_lines(self, ct, check_settings):
        grep = CommandResult(0, "\n".join([
            "May  1 10:30:00 web kernel: I/O error on sda",
            "May  1 11:30:00 web app[42]: failed to start worker",
            "May  1 11:45:10 web app[42]: worker crash",
        ]))
        check, executor, notifier = make_check(LogCheck, linux_guest(grep=grep), check_settings)

        assert check.run(ct, SINCE, now=NOW) is False

        (priority, title, message, topic, tags), = sent(notifier)
        assert priority == Priority.URGENT
        assert title == "ct 200 Log Issues"
        assert message.startswith("Issues in ct 200 (web) logs (/var/log/syslog, 2 errors):\n")
        assert "failed to start worker" in message
        assert "I/O error" not in message
        assert topic == LOGS_TOPIC
        assert tags == "warning,ct,web"

        grep_call = next(guest_argv(c) for c in executor.calls if guest_argv(c)[0] == "grep")
        assert grep_call == ["grep", "-i", "-E", check_settings['error_patterns'], "/var/log/syslog"]

    def test_only_old_lines(self, ct, check_settings):
        grep = CommandResult(0, "May  1 09:00:00 web kernel: error\n")
        check, _, notifier = make_check(LogCheck, linux_guest(grep=grep), check_settings)

        assert check.run(ct, SINCE, now=NOW) is True
        notifier.send.assert_not_called()

    def test_falls_back_to_messages(self, ct, check_settings):
        handler = linux_guest(files=("/var/log/messages",))
        check, executor, _ = make_check(LogCheck, handler, check_settings)

        assert check.find_log_file(ct, check_settings['log_files']) == "/var/log/messages"

    def test_log_missing(self, ct, check_settings):
        check, _, notifier = make_check(LogCheck, linux_guest(files=()), check_settings)

        assert check.run(ct, SINCE, now=NOW) is False

        (priority, title, message, _, _), = sent(notifier)
        assert title == "ct 200 Log Missing"
        assert "/var/log/syslog /var/log/messages" in message

    def test_grep_error(self, ct, check_settings):
        grep = CommandResult(2, "", "grep: /var/log/syslog: Permission denied")
        check, _, notifier = make_check(LogCheck, linux_guest(grep=grep), check_settings)

        assert check.run(ct, SINCE, now=NOW) is False

        (priority, title, message, _, _), = sent(notifier)
        assert priority == Priority.URGENT
        assert title == "ct 200 Log Access Error"
        assert "Permission denied" in message

    def test_tool_missing(self, ct, check_settings):
        check, _, notifier = make_check(
            LogCheck, linux_guest(tools=("grep",)), check_settings
        )

        assert check.run(ct, SINCE, now=NOW) is False
        assert sent(notifier)[0][1] == "ct 200 Tool Missing"

    def test_windows_is_skipped(self, check_settings):
        vm = Guest(101, "pve1", "win", "vm", is_windows=True)
        check, executor, notifier = make_check(LogCheck, linux_guest(), check_settings)

        assert check.run(vm, SINCE, now=NOW) is True

        (priority, title, message, topic, tags), = sent(notifier)
        assert priority == Priority.DEFAULT
        assert title == "vm 101 Skipped"
        assert tags == "warning,vm,win"
        assert executor.calls == []

    def test_vm_without_agent(self, check_settings):
        vm = Guest(101, "pve1", "db", "vm", agent_available=False)
        check, _, notifier = make_check(LogCheck, linux_guest(), check_settings)

        assert check.run(vm, SINCE, now=NOW) is False
        (_, title, _, topic, _), = sent(notifier)
        assert title == "vm 101 Agent Unavailable"
        assert topic == LOGS_TOPIC


class TestLogTimestamps:
    """Tests for log line timestamp parsing."""

    def test_syslog(self):
        assert parse_log_timestamp("May  1 11:30:00 host app: x", NOW) == datetime(2024, 5, 1, 11, 30)

    def test_syslog_previous_year(self):
        now = datetime(2024, 1, 1, 0, 10)
        assert parse_log_timestamp("Dec 31 23:59:00 host x", now) == datetime(2023, 12, 31, 23, 59)

    def test_syslog_slightly_ahead_stays_current_year(self):
        stamp = parse_log_timestamp("May  1 12:00:30 web kernel: panic", NOW)
        assert stamp == datetime(2024, 5, 1, 12, 0, 30)

    def test_iso_naive(self):
        stamp = parse_log_timestamp("2024-05-01T11:30:00.123456 host app: x", NOW)
        assert stamp == datetime(2024, 5, 1, 11, 30, 0, 123456)

    def test_iso_utc(self):
        expected = datetime(2024, 5, 1, 11, 30, tzinfo=timezone.utc).astimezone().replace(tzinfo=None)
        assert parse_log_timestamp("2024-05-01T11:30:00Z host x", NOW) == expected

    def test_iso_compact_offset(self):
        a = parse_log_timestamp("2024-05-01T13:30:00+0200 host x", NOW)
        b = parse_log_timestamp("2024-05-01T11:30:00+00:00 host x", NOW)
        assert a == b

    def test_unparsable(self):
        assert parse_log_timestamp("kernel: error without time", NOW) is None
        assert parse_log_timestamp("Foo  1 11:30:00 host", NOW) is None

    def test_filter_lines_since(self):
        lines = [
            "May  1 11:00:00 host boundary error",
            "May  1 11:00:01 host later error",
            "no timestamp error",
        ]
        assert filter_lines_since(lines, SINCE, NOW) == ["May  1 11:00:01 host later error"]

    def test_lines_written_after_now_are_kept(self):
        lines = ["May  1 12:00:30 web kernel: panic"]
        assert filter_lines_since(lines, SINCE, NOW) == lines


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
