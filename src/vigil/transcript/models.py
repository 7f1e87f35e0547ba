"""Typed records for the host conversation log.

The log is newline-delimited JSON. Each record carries a ``type`` tag; the
tags this package understands map to one dataclass each, and every other tag
becomes an ``UnknownEntry`` so newer log formats never look malformed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Union


@dataclass(frozen=True)
class TextBlock:
    text: str


@dataclass(frozen=True)
class ThinkingBlock:
    thinking: str


@dataclass(frozen=True)
class ToolUseBlock:
    name: str
    input: Any = None
    tool_use_id: str | None = None


@dataclass(frozen=True)
class ToolResultBlock:
    tool_use_id: str | None
    content: Any = None


@dataclass(frozen=True)
class OtherBlock:
    block_type: str


ContentBlock = Union[TextBlock, ThinkingBlock, ToolUseBlock, ToolResultBlock, OtherBlock]


@dataclass(frozen=True)
class SummaryEntry:
    text: str
    leaf_uuid: str | None = None


@dataclass(frozen=True)
class FileSnapshotEntry:
    message_id: str | None = None


@dataclass(frozen=True)
class UserEntry:
    uuid: str
    parent_uuid: str | None = None
    session_id: str | None = None
    timestamp: datetime | None = None
    content: tuple[ContentBlock, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class AssistantEntry:
    uuid: str
    parent_uuid: str | None = None
    session_id: str | None = None
    timestamp: datetime | None = None
    content: tuple[ContentBlock, ...] = field(default_factory=tuple)
    model: str | None = None


@dataclass(frozen=True)
class UnknownEntry:
    entry_type: str = ""


TranscriptEntry = Union[SummaryEntry, FileSnapshotEntry, UserEntry, AssistantEntry, UnknownEntry]


class MalformedRecordError(ValueError):
    pass


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    raw = value.strip()
    if raw.endswith(("Z", "z")):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    return as_utc(parsed)


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _user_block(raw: Any) -> ContentBlock | None:
    if isinstance(raw, str):
        return TextBlock(text=raw)
    if not isinstance(raw, dict):
        return None
    block_type = str(raw.get("type") or "")
    if block_type == "text":
        return TextBlock(text=str(raw.get("text") or ""))
    if block_type == "tool_result":
        return ToolResultBlock(
            tool_use_id=_optional_str(raw.get("tool_use_id")),
            content=raw.get("content"),
        )
    return OtherBlock(block_type=block_type)


def _assistant_block(raw: Any) -> ContentBlock | None:
    if not isinstance(raw, dict):
        return None
    block_type = str(raw.get("type") or "")
    if block_type == "text":
        return TextBlock(text=str(raw.get("text") or ""))
    if block_type == "thinking":
        return ThinkingBlock(thinking=str(raw.get("thinking") or ""))
    if block_type == "tool_use":
        name = raw.get("name")
        if not isinstance(name, str):
            return OtherBlock(block_type=block_type)
        return ToolUseBlock(
            name=name,
            input=raw.get("input"),
            tool_use_id=_optional_str(raw.get("id")),
        )
    return OtherBlock(block_type=block_type)


def _message_fields(record: dict[str, Any]) -> dict[str, Any]:
    uuid = record.get("uuid")
    if not isinstance(uuid, str):
        raise MalformedRecordError("message record is missing 'uuid'")
    message = record.get("message")
    if not isinstance(message, dict):
        raise MalformedRecordError("message record is missing 'message'")
    return {
        "uuid": uuid,
        "parent_uuid": _optional_str(record.get("parentUuid")),
        "session_id": _optional_str(record.get("sessionId")),
        "timestamp": parse_timestamp(record.get("timestamp")),
    }


def entry_from_record(record: Any) -> TranscriptEntry:
    if not isinstance(record, dict):
        raise MalformedRecordError("transcript record is not a JSON object")
    entry_type = record.get("type")
    if entry_type == "summary":
        summary = record.get("summary")
        if not isinstance(summary, str):
            raise MalformedRecordError("summary record is missing 'summary'")
        return SummaryEntry(text=summary, leaf_uuid=_optional_str(record.get("leafUuid")))
    if entry_type == "file-history-snapshot":
        return FileSnapshotEntry(message_id=_optional_str(record.get("messageId")))
    if entry_type == "user":
        fields = _message_fields(record)
        content = record["message"].get("content")
        if isinstance(content, str):
            blocks: tuple[ContentBlock, ...] = (TextBlock(text=content),)
        elif isinstance(content, list):
            blocks = tuple(b for b in (_user_block(raw) for raw in content) if b is not None)
        else:
            raise MalformedRecordError("user message content must be a string or a list")
        return UserEntry(content=blocks, **fields)
    if entry_type == "assistant":
        fields = _message_fields(record)
        message = record["message"]
        content = message.get("content")
        if not isinstance(content, list):
            raise MalformedRecordError("assistant message content must be a list")
        blocks = tuple(b for b in (_assistant_block(raw) for raw in content) if b is not None)
        return AssistantEntry(
            content=blocks,
            model=_optional_str(message.get("model")),
            **fields,
        )
    return UnknownEntry(entry_type=str(entry_type or ""))
