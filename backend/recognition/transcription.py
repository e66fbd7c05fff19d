"""
Transcription output model.

Pure data; produced by the reducer, delivered to the session owner.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class TranscriptionEvent:
    """
    One recognized sentence (partial or final) for the current task.

    Only ever built from result-generated events whose task_id matched
    the session's live task.
    """
    text: str
    is_final: bool
    begin_time_ms: int | None
    end_time_ms: int | None
    task_id: str
    usage_duration_s: float | None = None

    def to_broadcast(self, client_id: str) -> dict[str, Any]:
        """Observer-facing event ({type: "asr_result", ...})."""
        return {
            "type": "asr_result",
            "text": self.text,
            "isEnd": self.is_final,
            "clientId": client_id,
        }
