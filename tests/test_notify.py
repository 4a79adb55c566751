"""
tests/test_notify.py -- Message builders, senders and the retrying dispatcher.

No network: HttpMailSender gets a MagicMock in place of requests.Session.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import requests

from notify.dispatcher import NotificationDispatcher
from notify.messages import admin_message, password_reset_message, verification_message, welcome_message
from notify.sender import HttpMailSender, LogSender, MemorySender, Notification

TOKEN = "ab" * 32


def _message(to: str = "a@b.com") -> Notification:
    return Notification(to=to, subject="Hi", html_body="<p>Hi</p>", text_body="Hi")


class TestMessages:
    def test_verification_link(self) -> None:
        msg = verification_message("a@b.com", "Ana", TOKEN, "MapVision", "https://maps.example/")
        assert msg.subject == "Verify your MapVision account"
        assert f"https://maps.example/verify-email?token={TOKEN}" in msg.text_body
        assert f'href="https://maps.example/verify-email?token={TOKEN}"' in msg.html_body

    def test_reset_link(self) -> None:
        msg = password_reset_message("a@b.com", "Ana", TOKEN, "MapVision", "https://maps.example")
        assert f"https://maps.example/reset-password?token={TOKEN}" in msg.text_body
        assert "1 hour" in msg.text_body

    def test_user_supplied_text_is_escaped(self) -> None:
        msg = admin_message("a@b.com", "<b>Ana</b>", "Notice", "<script>alert(1)</script>\nsecond line", "MapVision")
        assert "<script>" not in msg.html_body
        assert "&lt;script&gt;" in msg.html_body
        assert "&lt;b&gt;Ana&lt;/b&gt;" in msg.html_body
        assert msg.html_body.count("<p>") == 4

    def test_welcome_without_name(self) -> None:
        msg = welcome_message("a@b.com", "", "MapVision", "https://maps.example")
        assert msg.text_body.startswith("Hello,")


class TestSenders:
    def test_log_sender_never_logs_body(self, caplog) -> None:
        caplog.set_level("INFO", logger="identity.notify")
        msg = verification_message("a@b.com", "Ana", TOKEN, "MapVision", "https://maps.example")
        assert LogSender().send(msg)
        assert "a@b.com" in caplog.text
        assert TOKEN not in caplog.text

    def test_memory_sender_scripted_failures(self) -> None:
        sender = MemorySender(fail_next=1)
        assert not sender.send(_message())
        assert sender.send(_message())
        assert sender.attempts == 2
        assert len(sender.to("a@b.com")) == 1

    def test_http_sender_posts_payload(self) -> None:
        session = MagicMock()
        session.headers = {}
        sender = HttpMailSender(
            "https://relay.example/send", "noreply@maps.example", token="relay-key", session=session
        )
        assert sender.send(_message())

        session.post.assert_called_once()
        args, kwargs = session.post.call_args
        assert args == ("https://relay.example/send",)
        assert kwargs["json"] == {
            "from": "noreply@maps.example",
            "to": "a@b.com",
            "subject": "Hi",
            "html": "<p>Hi</p>",
            "text": "Hi",
        }
        assert kwargs["timeout"] == 10.0
        assert session.headers["Authorization"] == "Bearer relay-key"
        assert session.max_redirects == 3

    def test_http_sender_reports_transport_errors(self) -> None:
        session = MagicMock()
        session.headers = {}
        session.post.side_effect = requests.ConnectionError("relay down")
        assert not HttpMailSender("https://relay.example/send", "noreply@maps.example", session=session).send(
            _message()
        )

    def test_http_sender_reports_error_status(self) -> None:
        session = MagicMock()
        session.headers = {}
        session.post.return_value.raise_for_status.side_effect = requests.HTTPError("502 Bad Gateway")
        assert not HttpMailSender("https://relay.example/send", "noreply@maps.example", session=session).send(
            _message()
        )


class TestDispatcher:
    def test_retries_until_delivered(self) -> None:
        sender = MemorySender(fail_next=2)
        sleeps: list[float] = []
        dispatcher = NotificationDispatcher(sender, attempts=3, delay=5.0, sleep=sleeps.append)
        assert dispatcher.dispatch(_message()) is True
        assert sender.attempts == 3
        assert sleeps == [5.0, 5.0]

    def test_gives_up_after_attempts(self) -> None:
        sender = MemorySender(fail_next=10)
        sleeps: list[float] = []
        dispatcher = NotificationDispatcher(sender, attempts=3, delay=1.0, sleep=sleeps.append)
        assert dispatcher.dispatch(_message()) is False
        assert sender.attempts == 3
        assert len(sleeps) == 2

    def test_raising_sender_counts_as_failure(self) -> None:
        sender = MagicMock()
        sender.send.side_effect = [RuntimeError("boom"), True]
        dispatcher = NotificationDispatcher(sender, attempts=3, delay=0, sleep=lambda _s: None)
        assert dispatcher.dispatch(_message()) is True
        assert sender.send.call_count == 2

    def test_executor_returns_future(self) -> None:
        sender = MemorySender()
        with ThreadPoolExecutor(max_workers=1) as pool:
            future = NotificationDispatcher(sender, executor=pool).dispatch(_message())
            assert future.result(timeout=5) is True
        assert len(sender.sent) == 1
