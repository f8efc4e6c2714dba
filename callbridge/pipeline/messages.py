"""Events a turn pipeline invocation publishes on the session's outbound queue.

An invocation emits zero or more ``AudioChunk`` events in generation order,
then either exactly one ``HistoryUpdate`` or exactly one ``TurnError``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

from callbridge.errors import ErrorCode


@dataclass(frozen=True)
class AudioChunk:
    chunk: bytes


@dataclass(frozen=True)
class HistoryUpdate:
    history: list[dict[str, str]] = field(default_factory=list)


@dataclass(frozen=True)
class TurnError:
    code: ErrorCode
    message: str


PipelineEvent = Union[AudioChunk, HistoryUpdate, TurnError]
