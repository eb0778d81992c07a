"""Shared utilities."""

from .dispatch import Dispatcher, Event

__all__ = ["Dispatcher", "Event"]
