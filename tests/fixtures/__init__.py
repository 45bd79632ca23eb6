"""Test fixtures for deployflow.

Provides test doubles for processes, clocks, senders and hooks.
"""

from .doubles import (
    FakeClock,
    FakeSender,
    RecordingHook,
    ScriptedRunner,
    scripted_factory,
)

__all__ = [
    "FakeClock",
    "FakeSender",
    "RecordingHook",
    "ScriptedRunner",
    "scripted_factory",
]
