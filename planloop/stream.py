"""
Agent stream interpreter.

Consumes the newline-delimited JSON event feed of one agent invocation
(Claude Code `--output-format stream-json --verbose`) in a single pass:

- renders progress to the operator as events arrive
- accumulates assistant text
- detects completion and failure sentinels

Event shapes handled:

    {"type": "assistant", "message": {"content": [...], "usage": {...}}}
    {"type": "result", "result": "..."}
    {"type": "done"}                      structured completion signal

Backends that emit the structured "done" event are authoritative. Scanning
assistant text for sentinel strings is kept as a compatibility shim for
backends that cannot.

Malformed or unknown events are skipped. The only hard error is a line
larger than MAX_LINE_BYTES.
"""

import json
import logging
import re
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Deque, Dict, Iterable, List, Optional

import click

from planloop.config import SignalsConfig

logger = logging.getLogger(__name__)

MAX_LINE_BYTES = 1024 * 1024
DEFAULT_TOKEN_THRESHOLD = 120000

FAILURE_PATTERNS = [
    ("task_failed", re.compile(r"###TASK_FAILED:([^#]+)###")),
    ("plan_failed", re.compile(r"###PLAN_FAILED:([^#]+)###")),
    ("blocked", re.compile(r"###BLOCKED:([^#]+)###")),
    ("bailout", re.compile(r"###BAILOUT:([^#]+)###")),
]


class StreamError(Exception):
    """Raised when the event stream cannot be read (e.g. oversize line)."""


@dataclass
class FailureSignal:
    """A failure the agent reported through a sentinel."""
    type: str  # task_failed, plan_failed, blocked, bailout
    detail: str


@dataclass
class TokenStats:
    """Token usage accumulated over one invocation."""
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


def clean_text(text: str) -> str:
    """Collapse all whitespace runs into single spaces."""
    return " ".join(text.split())


def truncate_text(text: str, limit: int) -> str:
    """Clean and truncate text to at most `limit` characters."""
    text = clean_text(text)
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


class OutputHandler:
    """Receives interpreted stream events. Subclasses override what they need."""

    def on_tool_use(self, name: str) -> None:
        pass

    def on_text(self, text: str) -> None:
        pass

    def on_done(self, result: str) -> None:
        pass

    def on_iteration_complete(self) -> None:
        pass

    def on_complete(self) -> None:
        pass

    def on_plan_complete(self) -> None:
        pass

    def on_failure(self, signal: FailureSignal) -> None:
        pass

    def on_token_usage(self, usage: TokenStats) -> None:
        pass


class ConsoleHandler(OutputHandler):
    """Renders events to the terminal and records completion state."""

    def __init__(
        self,
        token_threshold: int = DEFAULT_TOKEN_THRESHOLD,
        echo: bool = True,
        capture_lines: int = 20,
    ):
        self.token_threshold = token_threshold
        self.echo = echo
        self.tool_count = 0
        self.last_tool = ""
        self.text_parts: List[str] = []
        self.captured_logs: Deque[str] = deque(maxlen=capture_lines)
        self.token_stats = TokenStats()
        self.failure: Optional[FailureSignal] = None
        self.iteration_complete = False
        self.complete = False
        self.plan_complete = False
        self.result_text = ""

    def _emit(self, line: str) -> None:
        self.captured_logs.append(line)
        if self.echo:
            click.echo(line)

    def on_tool_use(self, name: str) -> None:
        self.tool_count += 1
        self.last_tool = name

    def on_text(self, text: str) -> None:
        self.text_parts.append(text)
        timestamp = datetime.now().strftime("[%H:%M:%S]")
        truncated = truncate_text(text, 400)
        if self.tool_count > 0:
            self._emit(f"{timestamp} [Tools: {self.tool_count}] {truncated}")
            self.tool_count = 0
        else:
            self._emit(f"{timestamp} {truncated}")

    def on_done(self, result: str) -> None:
        self.result_text = result
        timestamp = datetime.now().strftime("[%H:%M:%S]")
        self._emit(f"{timestamp} [Done] {truncate_text(result, 200)}")

    def on_iteration_complete(self) -> None:
        self.iteration_complete = True

    def on_complete(self) -> None:
        self.complete = True

    def on_plan_complete(self) -> None:
        self.plan_complete = True

    def on_failure(self, signal: FailureSignal) -> None:
        self.failure = signal
        self._emit(click.style(f"[{signal.type}] {signal.detail}", fg="red"))

    def on_token_usage(self, usage: TokenStats) -> None:
        self.token_stats.input_tokens += usage.input_tokens
        self.token_stats.output_tokens += usage.output_tokens
        self.token_stats.cache_read_tokens += usage.cache_read_tokens

    @property
    def assistant_text(self) -> str:
        """All assistant text seen so far, in order."""
        return "\n".join(self.text_parts)

    def is_complete(self) -> bool:
        """True once the overall-complete signal was seen anywhere."""
        return self.complete

    def is_iteration_complete(self) -> bool:
        return self.iteration_complete

    def is_plan_complete(self) -> bool:
        return self.plan_complete

    def has_failed(self) -> bool:
        return self.failure is not None

    def should_bail_out(self) -> bool:
        """True when token usage reached the safety threshold."""
        return self.token_stats.total_tokens >= self.token_threshold


def _scan_signals(text: str, handler: OutputHandler, signals: SignalsConfig) -> None:
    """Sentinel string scan (compatibility shim for unstructured backends)."""
    if signals.iteration_complete in text:
        handler.on_iteration_complete()
    if signals.complete in text:
        handler.on_complete()
    if signals.plan_complete in text:
        handler.on_plan_complete()
    for signal_type, pattern in FAILURE_PATTERNS:
        match = pattern.search(text)
        if match:
            handler.on_failure(FailureSignal(type=signal_type, detail=match.group(1).strip()))


def _iter_lines(reader: Any) -> Iterable[Any]:
    readline = getattr(reader, "readline", None)
    if readline is not None:
        while True:
            line = readline(MAX_LINE_BYTES + 1)
            if not line:
                return
            yield line
    else:
        yield from reader


def _to_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _decode_line(raw: Any) -> str:
    """Decode one raw line, enforcing the size limit on its UTF-8 bytes."""
    if isinstance(raw, bytes):
        data = raw.rstrip(b"\r\n")
    else:
        raw = str(raw)
        data = raw.rstrip("\r\n").encode("utf-8", errors="replace")
    if len(data) > MAX_LINE_BYTES:
        raise StreamError(f"Stream line exceeds {MAX_LINE_BYTES} bytes")
    return data.decode("utf-8", errors="replace")


def _handle_assistant(event: Dict[str, Any], handler: OutputHandler, signals: SignalsConfig) -> None:
    message = event.get("message")
    if not isinstance(message, dict):
        return

    usage = message.get("usage")
    if isinstance(usage, dict):
        handler.on_token_usage(TokenStats(
            input_tokens=_to_int(usage.get("input_tokens")),
            output_tokens=_to_int(usage.get("output_tokens")),
            cache_read_tokens=_to_int(usage.get("cache_read_input_tokens")),
        ))

    content = message.get("content")
    if not isinstance(content, list):
        return
    for block in content:
        if not isinstance(block, dict):
            continue
        if block.get("type") == "tool_use":
            handler.on_tool_use(str(block.get("name", "")))
        elif block.get("type") == "text":
            text = str(block.get("text", ""))
            _scan_signals(text, handler, signals)
            handler.on_text(clean_text(text))


def _dispatch(event: Dict[str, Any], handler: OutputHandler, signals: SignalsConfig) -> None:
    event_type = event.get("type")
    if event_type == "assistant":
        _handle_assistant(event, handler, signals)
    elif event_type == "result":
        result = str(event.get("result") or "")
        _scan_signals(result, handler, signals)
        handler.on_done(clean_text(result))
    elif event_type == "done":
        handler.on_complete()


def parse_stream(
    reader: Any,
    handler: OutputHandler,
    signals: Optional[SignalsConfig] = None,
) -> None:
    """Read an agent event stream to the end, dispatching to the handler.

    Args:
        reader: File-like object or iterable yielding lines (str or bytes)
        handler: Receives interpreted events
        signals: Sentinel strings to scan for (defaults from SignalsConfig)

    Raises:
        StreamError: if a single line exceeds MAX_LINE_BYTES of UTF-8
    """
    signals = signals or SignalsConfig()

    for raw in _iter_lines(reader):
        line = _decode_line(raw)
        if not line.strip():
            continue

        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed stream line")
            continue
        if not isinstance(event, dict):
            continue

        try:
            _dispatch(event, handler, signals)
        except (TypeError, ValueError, AttributeError) as e:
            logger.debug(f"Skipping malformed {event.get('type')} event: {e}")
