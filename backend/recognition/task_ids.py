"""
Task identity for cloud recognition attempts.

Rules:
- A task_id is generated for every (re)connect attempt and never reused.
- Ids are created by the runtime and carried into the reducer inside events;
  the reducer itself never generates ids.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import uuid4

from constants import TASK_ID_HEX_LEN


def new_task_id() -> str:
    """32 lowercase hex chars, the form the cloud service expects."""
    return uuid4().hex[:TASK_ID_HEX_LEN]


@dataclass(frozen=True)
class AsrTask:
    """
    Immutable record of the live recognition attempt.

    created_ts_ms comes from the event that created the task, so start
    latency can be computed without a clock inside the reducer.
    """

    task_id: str
    created_ts_ms: int
