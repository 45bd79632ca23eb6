"""Failure notifications."""

from .service import EmailSender, NotificationEvent, NotificationService

__all__ = [
    "EmailSender",
    "NotificationEvent",
    "NotificationService",
]
