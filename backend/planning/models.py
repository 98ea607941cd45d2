"""Per-caller scheduling records."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

# Offered by clients as quick picks; any positive integer is accepted.
ESTIMATE_CHOICES = (15, 30, 60, 120, 180, 240)


@dataclass(frozen=True)
class PriorityRecord:
    """A caller's schedule entry for one task.

    ``priority`` is ``None`` when the caller only set an estimate; such tasks
    rank like tasks without any record.
    """

    task_id: int
    priority: Optional[int] = None
    estimated_minutes: Optional[int] = None
