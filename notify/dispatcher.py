"""
notify/dispatcher.py -- Bounded-retry delivery that never fails the caller.

dispatch() makes up to `attempts` send() calls with `delay` seconds between
them. With an executor the loop runs on a worker thread so the request that
triggered the message returns immediately; without one it runs inline, which
is what the tests use.

A sender that raises is treated like one that returned False. Delivery
failures are logged and reported through the returned value or future,
never raised into the use case that asked for the message.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Executor, Future
from typing import Callable, Optional, Union

from notify.sender import Notification, NotificationSender

logger = logging.getLogger("identity.notify")


class NotificationDispatcher:
    def __init__(
        self,
        sender: NotificationSender,
        attempts: int = 3,
        delay: float = 5.0,
        executor: Optional[Executor] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.sender = sender
        self.attempts = max(1, attempts)
        self.delay = delay
        self.executor = executor
        self._sleep = sleep

    def dispatch(self, message: Notification) -> Union[bool, Future]:
        if self.executor is not None:
            return self.executor.submit(self._deliver, message)
        return self._deliver(message)

    def _deliver(self, message: Notification) -> bool:
        for attempt in range(1, self.attempts + 1):
            try:
                if self.sender.send(message):
                    if attempt > 1:
                        logger.info("Delivered '%s' to %s on attempt %d", message.subject, message.to, attempt)
                    return True
            except Exception:
                logger.exception("Sender raised delivering '%s' to %s", message.subject, message.to)
            if attempt < self.attempts:
                self._sleep(self.delay)
        logger.error("Giving up on '%s' to %s after %d attempts", message.subject, message.to, self.attempts)
        return False
