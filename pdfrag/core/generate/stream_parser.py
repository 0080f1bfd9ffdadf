"""
Incremental parser for the model's streaming wire format.

The upstream speaks OpenAI-compatible server-sent events: one JSON object per
`data:` line, `: comment` keep-alives, and a final `data: [DONE]`. Each line is
turned into tagged StreamRecords so callers decide "is this text" and "is this
usage" by kind, never by pattern-matching the raw bytes.
"""

import json
import logging
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class RecordKind(str, Enum):
    TEXT = "text"
    USAGE = "usage"
    CONTROL = "control"
    ERROR = "error"
    DONE = "done"


class Usage(BaseModel):
    prompt_tokens: int
    completion_tokens: int

    @property
    def total(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class StreamRecord(BaseModel):
    kind: RecordKind
    text: Optional[str] = None
    usage: Optional[Usage] = None
    raw: Optional[Dict[str, Any]] = None


def _parse_usage(usage: Any) -> Optional[Usage]:
    if not isinstance(usage, dict):
        return None
    prompt = usage.get("prompt_tokens", usage.get("promptTokens"))
    completion = usage.get("completion_tokens", usage.get("completionTokens"))
    if prompt is None or completion is None:
        return None
    try:
        return Usage(prompt_tokens=int(prompt), completion_tokens=int(completion))
    except (TypeError, ValueError):
        return None


def records_from_payload(payload: Dict[str, Any]) -> List[StreamRecord]:
    """Splits one decoded JSON event into tagged records (text before usage)."""
    if "error" in payload:
        error = payload["error"]
        message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
        return [StreamRecord(kind=RecordKind.ERROR, text=message, raw=payload)]

    records = []
    choices = payload.get("choices") or []
    if choices:
        delta = choices[0].get("delta") or {}
        content = delta.get("content")
        if content:
            records.append(StreamRecord(kind=RecordKind.TEXT, text=content))
        if choices[0].get("finish_reason"):
            records.append(StreamRecord(kind=RecordKind.CONTROL, raw={"finish_reason": choices[0]["finish_reason"]}))

    usage = _parse_usage(payload.get("usage"))
    if usage is not None:
        records.append(StreamRecord(kind=RecordKind.USAGE, usage=usage, raw=payload.get("usage")))

    if not records:
        records.append(StreamRecord(kind=RecordKind.CONTROL, raw=payload))
    return records


class StreamRecordParser:
    """
    Line-delimited SSE parser. `feed` accepts arbitrary text slices and only
    emits records for complete lines; `close` flushes a trailing partial line.
    """

    def __init__(self):
        self._buffer = ""
        self.done = False

    def feed(self, data: str) -> List[StreamRecord]:
        self._buffer += data
        records = []
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            records.extend(self.feed_line(line))
        return records

    def close(self) -> List[StreamRecord]:
        line, self._buffer = self._buffer, ""
        return self.feed_line(line) if line.strip() else []

    def feed_line(self, line: str) -> List[StreamRecord]:
        line = line.rstrip("\r")
        if not line.strip():
            return []
        if line.startswith(":"):
            # SSE comment, e.g. ": OPENROUTER PROCESSING"
            return [StreamRecord(kind=RecordKind.CONTROL, raw={"comment": line[1:].strip()})]
        if not line.startswith("data:"):
            # event:/id:/retry: fields carry no payload for us
            return [StreamRecord(kind=RecordKind.CONTROL, raw={"field": line})]

        body = line[5:].strip()
        if body == "[DONE]":
            self.done = True
            return [StreamRecord(kind=RecordKind.DONE)]

        try:
            payload = json.loads(body)
        except json.JSONDecodeError:
            logger.debug(f"Skipping undecodable stream line: {body[:80]}")
            return []
        if not isinstance(payload, dict):
            return [StreamRecord(kind=RecordKind.CONTROL, raw={"value": payload})]
        return records_from_payload(payload)


def last_usage(records: Iterable[StreamRecord]) -> Optional[Usage]:
    """Scans every record and keeps the last one that carries usage fields."""
    found = None
    for record in records:
        if record.kind == RecordKind.USAGE and record.usage is not None:
            found = record.usage
    return found
