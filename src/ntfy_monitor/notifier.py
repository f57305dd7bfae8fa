"""
Push notifications via an ntfy server.

Messages are POSTed to ``<server>/<base_topic>-<topic>`` with the title,
priority and tags carried in request headers.
"""

import base64
import logging
import urllib.error
import urllib.request
from email.header import Header
from typing import Optional, Dict, Any

from .exceptions import NotificationError
from .utils import truncate_string, sanitize_topic, get_hostname

logger = logging.getLogger("ntfy_monitor.notifier")


class Priority:
    """ntfy priority names."""

    MIN = "min"
    LOW = "low"
    DEFAULT = "default"
    HIGH = "high"
    URGENT = "urgent"


def encode_header(value: str) -> str:
    """RFC 2047-encode header values that are not plain ASCII."""
    try:
        value.encode('ascii')
        return value
    except UnicodeEncodeError:
        return Header(value, 'utf-8').encode()


class NtfyNotifier:
    """Sends alerts to ntfy; failures are logged, never raised."""

    DEFAULT_TIMEOUT = 10
    MAX_MESSAGE_LENGTH = 1000

    def __init__(
        self,
        server: str,
        base_topic: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: int = DEFAULT_TIMEOUT,
        max_message_length: int = MAX_MESSAGE_LENGTH,
        dry_run: bool = False,
        default_tags: Optional[str] = None,
    ):
        """
        Args:
            server: ntfy host[:port], optionally with scheme (http assumed).
            base_topic: Prefix of every topic.
            username: Basic auth user (used only together with password).
            password: Basic auth password.
            timeout: HTTP timeout in seconds.
            max_message_length: Longer messages are truncated with "...".
            dry_run: Log notifications instead of sending them.
            default_tags: Tags when a call gives none (default: hostname).
        """
        server = server.rstrip('/')
        self.base_url = server if '://' in server else f"http://{server}"
        self.base_topic = base_topic
        self.username = username
        self._password = password
        self.timeout = timeout
        self.max_message_length = max_message_length
        self.dry_run = dry_run
        self.default_tags = default_tags or get_hostname()

    @classmethod
    def from_config(cls, ntfy_config: Dict[str, Any], dry_run: bool = False) -> 'NtfyNotifier':
        return cls(
            server=ntfy_config.get('server', ''),
            base_topic=ntfy_config.get('base_topic', ''),
            username=ntfy_config.get('username') or None,
            password=ntfy_config.get('password') or None,
            timeout=int(ntfy_config.get('timeout', cls.DEFAULT_TIMEOUT)),
            max_message_length=int(ntfy_config.get('max_message_length', cls.MAX_MESSAGE_LENGTH)),
            dry_run=dry_run,
        )

    def full_topic(self, topic: str) -> str:
        return f"{self.base_topic}-{sanitize_topic(topic)}"

    def build_request(self, priority: str, title: str, message: str, topic: str,
                      tags: Optional[str] = None,
                      click_url: Optional[str] = None) -> urllib.request.Request:
        """Build the POST request for one notification."""
        message = truncate_string(message, self.max_message_length)

        headers = {
            'Title': encode_header(title),
            'Priority': priority,
            'Tags': encode_header(tags or self.default_tags),
        }
        if click_url:
            headers['Click'] = click_url
        if self.username and self._password:
            token = base64.b64encode(f"{self.username}:{self._password}".encode('utf-8'))
            headers['Authorization'] = f"Basic {token.decode('ascii')}"

        return urllib.request.Request(
            f"{self.base_url}/{self.full_topic(topic)}",
            data=message.encode('utf-8'),
            headers=headers,
            method='POST',
        )

    def send(self, priority: str, title: str, message: str, topic: str,
             tags: Optional[str] = None, click_url: Optional[str] = None) -> bool:
        """
        Send one notification.

        Returns:
            True if the server accepted it (or in dry-run mode).
        """
        request = self.build_request(priority, title, message, topic, tags, click_url)
        full_topic = self.full_topic(topic)

        logger.debug(f"Sending notification: {title} (topic: {full_topic})")

        if self.dry_run:
            logger.info(f"[dry-run] {priority} {full_topic}: {title} - "
                        f"{request.data.decode('utf-8')}")
            return True

        try:
            self.post(request, full_topic)
        except NotificationError as e:
            logger.error(f"Failed to send notification: {title} ({e})")
            return False

        logger.debug(f"Notification sent successfully: {title}")
        return True

    def post(self, request: urllib.request.Request, full_topic: str) -> int:
        """
        Deliver a prepared request.

        Returns:
            HTTP status code.

        Raises:
            NotificationError: On HTTP errors and connection failures.
        """
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                status = response.status
        except urllib.error.HTTPError as e:
            raise NotificationError(f"topic: {full_topic}, HTTP {e.code}",
                                    topic=full_topic, status=e.code)
        except (urllib.error.URLError, OSError) as e:
            raise NotificationError(f"topic: {full_topic}", topic=full_topic,
                                    details=str(e))

        if not 200 <= status < 300:
            raise NotificationError(f"topic: {full_topic}, HTTP {status}",
                                    topic=full_topic, status=status)
        return status
