"""Slash-command bot built on Discord application-command interactions."""

__version__ = "0.1.0"
