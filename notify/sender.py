"""
notify/sender.py -- Notification Sender implementations.

A sender delivers one message and reports success as a bool. It never
raises for delivery problems and never retries; retry policy belongs to
notify/dispatcher.py.

  LogSender       development default: logs recipient and subject only.
  MemorySender    tests: records messages, can be scripted to fail.
  HttpMailSender  POSTs JSON to a mail relay through a shared requests.Session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import requests

logger = logging.getLogger("identity.notify")


@dataclass
class Notification:
    to: str
    subject: str
    html_body: str
    text_body: str


class NotificationSender(Protocol):
    def send(self, message: Notification) -> bool: ...


class LogSender:
    """Writes a line per message to the log instead of delivering it."""

    def send(self, message: Notification) -> bool:
        logger.info("Notification (log only) to %s: %s", message.to, message.subject)
        return True


class MemorySender:
    """Keeps every delivered message in .sent.

    fail_next: number of upcoming send() calls that report failure, for
    exercising the dispatcher's retry loop.
    """

    def __init__(self, fail_next: int = 0) -> None:
        self.sent: list[Notification] = []
        self.attempts = 0
        self.fail_next = fail_next

    def send(self, message: Notification) -> bool:
        self.attempts += 1
        if self.fail_next > 0:
            self.fail_next -= 1
            return False
        self.sent.append(message)
        return True

    def to(self, address: str) -> list[Notification]:
        return [m for m in self.sent if m.to == address]


class HttpMailSender:
    """Delivers through an HTTP mail relay.

    Payload: {"from", "to", "subject", "html", "text"} as JSON, with an
    optional bearer token. Any non-2xx response or transport error is a
    failed delivery.
    """

    def __init__(
        self,
        relay_url: str,
        sender: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.relay_url = relay_url
        self.sender = sender
        self.timeout = timeout
        self._session = session or requests.Session()
        # Known relay endpoint; a long redirect chain is never legitimate.
        self._session.max_redirects = 3
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"

    def send(self, message: Notification) -> bool:
        payload = {
            "from": self.sender,
            "to": message.to,
            "subject": message.subject,
            "html": message.html_body,
            "text": message.text_body,
        }
        try:
            resp = self._session.post(self.relay_url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.warning("Mail relay delivery to %s failed: %s", message.to, e)
            return False
        return True
