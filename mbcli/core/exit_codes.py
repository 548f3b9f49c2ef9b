"""Process exit codes."""

from __future__ import annotations

SUCCESS: int = 0
"""Command completed, or a help/list/show path finished."""

FAILURE: int = 1
"""Bad argument, bad configuration, connection failure or protocol error."""

KEYBOARD_INTERRUPT: int = 130
"""Ctrl+C during command mode (128 + SIGINT)."""
