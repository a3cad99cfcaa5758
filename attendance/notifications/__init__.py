"""Result notifications."""

from .email_notifier import EmailNotifier

__all__ = ["EmailNotifier"]
