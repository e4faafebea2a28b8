"""Function-call recognition.

Turns model output into a tagged ``ParseResult``: ``PlainText`` or ``Call``.
JSON decoding errors are handled here and nowhere else; callers branch on the
result type.

Accepted call shapes (optionally wrapped in a ```json fence or <tool_call> tags):

    {"name": "create_request", "arguments": {...}}
    {"name": "create_request", "parameters": {...}}
    {"function": {"name": "create_request", "arguments": "{...}"}}
"""

from __future__ import annotations

import json
import re

from typing import Any

from models.action_models import Call, FunctionCall, ParseResult, PlainText, Primitive, ToolCallPayload

FENCE = "```"
TAG_OPEN = "<tool_call>"
TAG_CLOSE = "</tool_call>"

_FENCED = re.compile(r"^```[A-Za-z0-9_-]*\s*(.*?)\s*```$", re.DOTALL)
_TAGGED = re.compile(r"^<tool_call>\s*(.*?)\s*</tool_call>$", re.DOTALL)


def _decode_json(text: str) -> Any | None:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError, ValueError):
        return None


def _to_primitive(value: Any) -> Primitive:
    if value is None or isinstance(value, str | int | float | bool):
        return value
    # Nested structures are passed through as their JSON text
    return json.dumps(value, ensure_ascii=False)


def _coerce_arguments(raw: Any) -> dict[str, Primitive] | None:
    if raw is None:
        return {}
    if isinstance(raw, str):
        raw = _decode_json(raw) if raw.strip() else {}
    if not isinstance(raw, dict):
        return None
    return {str(key): _to_primitive(value) for key, value in raw.items()}


def _coerce_call(obj: Any) -> FunctionCall | None:
    """Map a decoded JSON value onto a FunctionCall, or None if it is not one."""
    if not isinstance(obj, dict):
        return None

    if isinstance(obj.get("function"), dict):
        obj = obj["function"]

    name = obj.get("name")
    if not isinstance(name, str) or not name.strip():
        return None

    if "arguments" in obj:
        raw_args = obj["arguments"]
    elif "parameters" in obj:
        raw_args = obj["parameters"]
    else:
        return None

    arguments = _coerce_arguments(raw_args)
    if arguments is None:
        return None
    return FunctionCall(name=name.strip(), arguments=arguments)


def _unwrap(text: str) -> str:
    stripped = text.strip()
    for pattern in (_TAGGED, _FENCED):
        match = pattern.match(stripped)
        if match:
            return match.group(1)
    return stripped


def parse_text(text: str) -> ParseResult:
    """Classify a piece of generated text as a function call or plain text."""
    call = _coerce_call(_decode_json(_unwrap(text)))
    if call is None:
        return PlainText(text=text)
    return Call(call=call)


def parse_tool_payload(payload: ToolCallPayload) -> ParseResult:
    """Classify a structured tool call.

    Undecodable arguments degrade to the raw argument text.
    """
    arguments = _coerce_arguments(payload.arguments)
    if arguments is None:
        return PlainText(text=payload.arguments)
    return Call(call=FunctionCall(name=payload.name, arguments=arguments))


def _partial_opener_length(text: str) -> int:
    """Length of the longest suffix of ``text`` that could start a multi-char opener."""
    best = 0
    for opener in (FENCE, TAG_OPEN):
        for n in range(min(len(opener) - 1, len(text)), 0, -1):
            if text.endswith(opener[:n]):
                best = max(best, n)
                break
    return best


class CallDetector:
    """Streaming scanner that spots inline function calls in generated text.

    Text before a candidate opener is released as soon as it arrives. From the
    opener on, text is held until the candidate closes, the hold exceeds
    ``lookahead_chars``, or the stream ends. Closed candidates are parsed;
    anything that is not a call comes back as PlainText, unchanged and in order.

    Usage:
        detector = CallDetector()
        for fragment in fragments:
            for result in detector.feed(fragment):
                ...
        for result in detector.flush():
            ...
    """

    def __init__(self, lookahead_chars: int = 4096) -> None:
        self.lookahead_chars = lookahead_chars
        self._buffer = ""
        self._kind: str | None = None
        # Brace scanner state, carried across fragments
        self._scan_pos = 0
        self._depth = 0
        self._in_string = False
        self._escape = False

    @property
    def holding(self) -> bool:
        """True while text is being withheld."""
        return bool(self._buffer)

    def feed(self, text: str) -> list[ParseResult]:
        if not text:
            return []
        self._buffer += text
        return self._drain(final=False)

    def flush(self) -> list[ParseResult]:
        """Release everything still held at end of stream."""
        return self._drain(final=True)

    def _reset_candidate(self, kind: str | None) -> None:
        self._kind = kind
        self._scan_pos = 0
        self._depth = 0
        self._in_string = False
        self._escape = False

    def _drain(self, final: bool) -> list[ParseResult]:
        results: list[ParseResult] = []

        while self._buffer:
            if self._kind is None:
                start, kind = self._find_opener(self._buffer)
                if kind is None:
                    keep = 0 if final else _partial_opener_length(self._buffer)
                    release = self._buffer[: len(self._buffer) - keep]
                    if release:
                        results.append(PlainText(text=release))
                    self._buffer = self._buffer[len(release) :]
                    break

                if start > 0:
                    results.append(PlainText(text=self._buffer[:start]))
                    self._buffer = self._buffer[start:]
                self._reset_candidate(kind)

            end = self._candidate_end()
            if end is not None:
                candidate, self._buffer = self._buffer[:end], self._buffer[end:]
                self._reset_candidate(None)
                results.append(parse_text(candidate))
                continue

            if final or len(self._buffer) > self.lookahead_chars:
                results.append(PlainText(text=self._buffer))
                self._buffer = ""
                self._reset_candidate(None)
            break

        return results

    @staticmethod
    def _find_opener(text: str) -> tuple[int, str | None]:
        positions = [
            (text.find("{"), "brace"),
            (text.find(FENCE), "fence"),
            (text.find(TAG_OPEN), "tag"),
        ]
        found = [(pos, kind) for pos, kind in positions if pos >= 0]
        if not found:
            return -1, None
        return min(found)

    def _candidate_end(self) -> int | None:
        """Index just past the close of the held candidate, if it has closed."""
        if self._kind == "fence":
            idx = self._buffer.find(FENCE, len(FENCE))
            return idx + len(FENCE) if idx >= 0 else None
        if self._kind == "tag":
            idx = self._buffer.find(TAG_CLOSE, len(TAG_OPEN))
            return idx + len(TAG_CLOSE) if idx >= 0 else None

        text = self._buffer
        for pos in range(self._scan_pos, len(text)):
            char = text[pos]
            if self._in_string:
                if self._escape:
                    self._escape = False
                elif char == "\\":
                    self._escape = True
                elif char == '"':
                    self._in_string = False
            elif char == '"':
                self._in_string = True
            elif char == "{":
                self._depth += 1
            elif char == "}":
                self._depth -= 1
                if self._depth == 0:
                    return pos + 1
        self._scan_pos = len(text)
        return None


__all__ = [
    "CallDetector",
    "parse_text",
    "parse_tool_payload",
]
