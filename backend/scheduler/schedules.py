"""Schedule types for the task runner."""

from __future__ import annotations

from dataclasses import dataclass


class Schedule:
    """Base class for schedules."""


@dataclass
class Every(Schedule):
    """Run at a fixed interval, optionally spread by +/- `jitter` seconds."""

    seconds: int = 60
    jitter: int = 0
