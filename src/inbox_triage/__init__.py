"""Inbox triage - email thread triage and sync engine."""

__version__ = "0.1.0"
