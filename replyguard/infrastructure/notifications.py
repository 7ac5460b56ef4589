"""
Notifier - Delivery of Approval Reminders
=========================================

Reminder digests for reviews waiting on human approval go through a
Notifier. The default implementation writes them to the log; an email or
chat backend only needs to implement `send()`.
"""

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class NotifierError(Exception):
    """Base exception for notification errors."""
    pass


class Notifier(ABC):
    """
    Abstract base class for notification backends.
    Implement this interface to add email, Slack, etc.
    """

    @abstractmethod
    def send(self, subject: str, body: str) -> None:
        """Deliver one message. Raises NotifierError on failure."""
        ...


class LoggingNotifier(Notifier):
    """Writes notifications to the application log."""

    def __init__(self, level: int = logging.WARNING):
        self._level = level

    def send(self, subject: str, body: str) -> None:
        logger.log(self._level, f"{subject}\n{body}")
