"""Plantdesk ticket escalation service."""

__version__ = "0.1.0"
