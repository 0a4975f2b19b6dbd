"""Transcript chunking into task episodes.

Segments a flat, time-ordered transcript of agent messages into TaskChunks.
A plain-text message matching a start pattern opens a chunk; every later
message joins it until a plain-text message matches an end pattern or the
next start arrives. Along the way a checkpoint timeline is recorded:

- ``start``: the message that opened the chunk
- ``tool_usage``: a tool call payload (JSON object), optimistically successful
- ``error``: an error message; also marks the latest tool usage as failed
- ``feedback``: a user feedback message
- ``completion``: the end message, or a synthesized one when the transcript
  runs out first

Chunks with too few checkpoints or messages, or too short a duration, are
treated as noise and dropped.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from engram.core.config import ChunkerConfig
from engram.core.logging import get_logger
from engram.learning.exceptions import ParseError

_logger = get_logger("learning.chunker")

SYNTHESIZED_COMPLETION = "Task ended without explicit completion"


class CheckpointType(str, Enum):
    START = "start"
    TOOL_USAGE = "tool_usage"
    ERROR = "error"
    COMPLETION = "completion"
    FEEDBACK = "feedback"


@dataclass
class Message:
    """One transcript entry.

    Attributes:
        type: Message kind in the transcript source (e.g. "say", "ask").
        ts: Epoch milliseconds.
        text: Message body. Tool messages carry a JSON payload here.
        say: Sub-kind, e.g. "text", "tool", "error", "user_feedback".
    """

    type: str
    ts: int
    text: str | None = None
    say: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        """Build a message from a transcript JSON object.

        Missing fields get neutral defaults; a non-numeric ``ts`` becomes 0.
        """
        try:
            ts = int(data.get("ts", 0))
        except (TypeError, ValueError):
            ts = 0
        text = data.get("text")
        return cls(
            type=str(data.get("type", "say")),
            ts=ts,
            text=text if isinstance(text, str) else None,
            say=data.get("say"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "ts": self.ts, "text": self.text, "say": self.say}


@dataclass
class Checkpoint:
    """A typed, timestamped marker within a chunk."""

    ts: int
    type: CheckpointType
    message: str
    success: bool | None = None


@dataclass
class TaskChunk:
    """A contiguous slice of a transcript covering one task episode."""

    start_ts: int
    end_ts: int
    messages: list[Message] = field(default_factory=list)
    checkpoints: list[Checkpoint] = field(default_factory=list)
    intent: str | None = None

    @property
    def duration(self) -> int:
        return self.end_ts - self.start_ts

    def checkpoints_of(self, checkpoint_type: CheckpointType) -> list[Checkpoint]:
        return [cp for cp in self.checkpoints if cp.type == checkpoint_type]

    @property
    def completion(self) -> Checkpoint | None:
        completions = self.checkpoints_of(CheckpointType.COMPLETION)
        return completions[0] if completions else None


def parse_tool_payload(text: str | None) -> dict[str, Any]:
    """Parse a tool message body.

    Raises:
        ParseError: If the text is not a JSON object.
    """
    try:
        payload = json.loads(text or "")
    except json.JSONDecodeError as e:
        raise ParseError(f"Tool payload is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise ParseError(f"Tool payload must be a JSON object, got {type(payload).__name__}")
    return payload


class MessageChunker:
    """Single-pass state machine turning transcripts into task chunks.

    The start and end predicates are ordered regex lists from ChunkerConfig,
    so calibration does not touch the state machine.
    """

    def __init__(self, config: ChunkerConfig | None = None) -> None:
        self.config = config or ChunkerConfig()
        self._start_patterns = [re.compile(p, re.IGNORECASE) for p in self.config.start_patterns]
        self._end_patterns = [re.compile(p, re.IGNORECASE) for p in self.config.end_patterns]

    def is_task_start(self, message: Message) -> bool:
        if message.say != "text":
            return False
        return any(p.search(message.text or "") for p in self._start_patterns)

    def is_task_end(self, message: Message) -> bool:
        if message.say != "text":
            return False
        return any(p.search(message.text or "") for p in self._end_patterns)

    def chunk_messages(self, messages: Iterable[Message]) -> list[TaskChunk]:
        """Split a transcript into valid task chunks, in transcript order."""
        chunks: list[TaskChunk] = []
        current: TaskChunk | None = None

        for message in messages:
            if not message.text:
                continue

            if self.is_task_start(message):
                if current is not None:
                    self._finalize(current)
                    chunks.append(current)
                current = self._open_chunk(message)
                continue

            if current is None:
                continue

            self._process(message, current)
            if self.is_task_end(message):
                self._finalize(current)
                chunks.append(current)
                current = None

        if current is not None:
            self._finalize(current)
            chunks.append(current)

        valid = [chunk for chunk in chunks if self._is_valid(chunk)]
        _logger.debug(
            "transcript_chunked",
            chunks=len(valid),
            dropped=len(chunks) - len(valid),
        )
        return valid

    @staticmethod
    def _open_chunk(message: Message) -> TaskChunk:
        text = message.text or ""
        return TaskChunk(
            start_ts=message.ts,
            end_ts=message.ts,
            messages=[message],
            checkpoints=[Checkpoint(ts=message.ts, type=CheckpointType.START, message=text)],
            intent=text,
        )

    def _process(self, message: Message, chunk: TaskChunk) -> None:
        chunk.messages.append(message)
        chunk.end_ts = message.ts
        text = message.text or ""

        if message.say == "tool":
            try:
                parse_tool_payload(text)
            except ParseError as e:
                _logger.warning("invalid_tool_message", ts=message.ts, error=str(e))
                return
            chunk.checkpoints.append(
                Checkpoint(ts=message.ts, type=CheckpointType.TOOL_USAGE, message=text, success=True)
            )

        elif message.say == "error":
            chunk.checkpoints.append(
                Checkpoint(ts=message.ts, type=CheckpointType.ERROR, message=text, success=False)
            )
            tool_usages = chunk.checkpoints_of(CheckpointType.TOOL_USAGE)
            if tool_usages:
                tool_usages[-1].success = False

        elif message.say == "user_feedback":
            chunk.checkpoints.append(
                Checkpoint(ts=message.ts, type=CheckpointType.FEEDBACK, message=text)
            )

        elif message.say == "text" and self.is_task_end(message):
            chunk.checkpoints.append(
                Checkpoint(
                    ts=message.ts,
                    type=CheckpointType.COMPLETION,
                    message=text,
                    success="fail" not in text.lower(),
                )
            )

    @staticmethod
    def _finalize(chunk: TaskChunk) -> None:
        if chunk.completion is None:
            chunk.checkpoints.append(
                Checkpoint(
                    ts=chunk.end_ts,
                    type=CheckpointType.COMPLETION,
                    message=SYNTHESIZED_COMPLETION,
                )
            )

    def _is_valid(self, chunk: TaskChunk) -> bool:
        return (
            len(chunk.checkpoints) >= self.config.min_checkpoints
            and len(chunk.messages) >= self.config.min_messages
            and chunk.duration >= self.config.min_duration
        )
