"""
Alert Sink

Posts markdown alerts to a chat webhook (DingTalk-style payload).
Identical messages are delivered only once.
"""

import hashlib
import logging
import requests
from collections import OrderedDict

logger = logging.getLogger(__name__)


class AlertDeliveryError(Exception):
    """Raised when the webhook rejects or cannot receive an alert"""


def content_key(title: str, body: str) -> str:
    """Deduplication key of an alert"""
    return hashlib.sha256(f"{title}\n{body}".encode('utf-8')).hexdigest()


class AlertSink:
    """Webhook alert poster with content deduplication"""

    def __init__(self, webhook_url: str, timeout: int = 10, max_remembered: int = 1000):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.max_remembered = max_remembered
        self._sent = OrderedDict()

    def _remember(self, key: str):
        self._sent[key] = True
        while len(self._sent) > self.max_remembered:
            self._sent.popitem(last=False)

    def build_payload(self, title: str, body: str) -> dict:
        return {
            'msgtype': 'markdown',
            'markdown': {
                'title': title,
                'text': f"{title}\n{body}"
            }
        }

    def send(self, title: str, body: str) -> bool:
        """
        Deliver an alert.

        Returns:
            True if posted, False if an identical alert was already delivered

        Raises:
            AlertDeliveryError: on transport failure or non-200 response
        """
        key = content_key(title, body)
        if key in self._sent:
            logger.info(f"Skipping duplicate alert: {title}")
            return False

        try:
            response = requests.post(
                self.webhook_url,
                json=self.build_payload(title, body),
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise AlertDeliveryError(f"Alert post failed: {e}") from e

        if response.status_code != 200:
            raise AlertDeliveryError(f"Alert webhook HTTP {response.status_code}: {response.text}")

        logger.info(f"Alert delivered: {title} ({response.text})")
        self._remember(key)
        return True
