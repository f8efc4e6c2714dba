"""SessionContext — per-call mutable state container.

One instance per connected call, owned by its ``CallSession``. There is no
process-wide registry keyed by session id.
"""

from __future__ import annotations

import asyncio
import enum
import time
from dataclasses import dataclass, field

from callbridge.audio.recorder import CallRecorder
from callbridge.audio.vad import EnergyVADSegmenter
from callbridge.pipeline.messages import PipelineEvent


class SessionStatus(str, enum.Enum):
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class SessionContext:
    """All per-call state for a single WebSocket connection."""

    session_id: str
    segmenter: EnergyVADSegmenter
    recorder: CallRecorder = field(default_factory=CallRecorder)
    history: list[dict[str, str]] = field(default_factory=list)
    outbound: asyncio.Queue[PipelineEvent] = field(default_factory=asyncio.Queue)
    status: SessionStatus = SessionStatus.OPEN
    turn_count: int = 0
    created_at: float = field(default_factory=time.time)

    def history_snapshot(self) -> list[dict[str, str]]:
        """Copy of the history that a turn may extend without aliasing."""
        return [dict(entry) for entry in self.history]
