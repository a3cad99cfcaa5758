"""Scheduled attendance capture: log in, screenshot, email."""

__version__ = "0.1.0"
