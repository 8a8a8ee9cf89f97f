"""
Best-effort extraction of overview, steps and files from a partial JSON buffer.

The buffer is whatever the provider has streamed so far; it is usually not yet
valid JSON. Nothing here is authoritative: the Finalizer's strict parse is the
source of truth once the stream ends. This module only feeds the live view and
must never raise.

The buffer only ever grows during a generation, so the extractor keeps resume
offsets and each update only looks at what arrived since the previous one.
"""

import json
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from common.logging import get_logger
from common.models import PlanStep, ProjectFiles, SessionSnapshot, StepStatus

logger = get_logger(__name__)

_OVERVIEW_KEY = re.compile(r'(?<!\\)"overview"\s*:\s*"')
_STEPS_KEY = re.compile(r'(?<!\\)"steps"\s*:\s*\[')
_FILES_KEY = re.compile(r'(?<!\\)"files"\s*:\s*\{')
# A key split across two updates is found again from this far back
_KEY_LOOKBACK = 64

# Body of a JSON string up to (not including) its closing quote or a trailing lone backslash
_STRING_BODY = re.compile(r'[^"\\]*(?:\\.[^"\\]*)*', re.DOTALL)
_STRUCTURE = re.compile(r'["\[\]{}]')
_PLAIN_RUN = re.compile(r"[^\\]+")
_WHITESPACE = re.compile(r"\s*")
_SEPARATORS = re.compile(r"[\s,]*")

_SIMPLE_ESCAPES = {
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "b": "\b",
    "f": "\f",
    '"': '"',
    "\\": "\\",
    "/": "/",
}
_HEX = set("0123456789abcdefABCDEF")


def _read_hex4(raw: str, start: int) -> Optional[int]:
    digits = raw[start:start + 4]
    if len(digits) == 4 and all(c in _HEX for c in digits):
        return int(digits, 16)
    return None


def decode_escapes(raw: str, final: bool = True) -> Tuple[str, int]:
    """
    Decode JSON string escapes; return (text, number of raw characters used).

    Decoding stops before a trailing incomplete escape (a lone backslash, or a
    truncated \\uXXXX). With final=False it also stops before a high surrogate
    whose low half may still be on its way.
    """
    out: List[str] = []
    i = 0
    n = len(raw)
    while i < n:
        plain = _PLAIN_RUN.match(raw, i)
        if plain:
            out.append(plain.group())
            i = plain.end()
            continue
        if i + 1 >= n:
            break
        esc = raw[i + 1]
        if esc != "u":
            out.append(_SIMPLE_ESCAPES.get(esc, esc))
            i += 2
            continue

        code = _read_hex4(raw, i + 2)
        if code is None:
            if i + 6 > n:
                break
            out.append(raw[i:i + 2])
            i += 2
            continue
        if 0xD800 <= code <= 0xDBFF:
            follow = raw[i + 6:i + 12]
            if not final and len(follow) < 6 and "\\u".startswith(follow[:2]):
                break
            low = _read_hex4(raw, i + 8) if follow[:2] == "\\u" else None
            if low is not None and 0xDC00 <= low <= 0xDFFF:
                code = 0x10000 + ((code - 0xD800) << 10) + (low - 0xDC00)
                i += 6
        i += 6
        out.append(chr(code))
    return "".join(out), i


def unescape_json_string(raw: str) -> str:
    """
    Decode the body of a JSON string literal in one left-to-right pass.

    A trailing incomplete escape is dropped so partially streamed values can be
    shown safely.
    """
    return decode_escapes(raw)[0]


def scan_string(text: str, start: int) -> Tuple[int, int]:
    """
    Look for the quote closing a string whose body resumes at `start`.

    Returns (closing index or -1, offset to resume from on the next call).
    """
    end = _STRING_BODY.match(text, start).end()
    if end < len(text) and text[end] == '"':
        return end, end
    return -1, end


def string_end(text: str, start: int) -> int:
    """Index of the quote closing the string whose body starts at `start`, or -1."""
    return scan_string(text, start)[0]


def matching_close(text: str, open_index: int) -> int:
    """Index of the bracket closing the one at `open_index`, or -1 if not arrived."""
    depth = 0
    pos = open_index
    while True:
        token = _STRUCTURE.search(text, pos)
        if token is None:
            return -1
        if token.group() == '"':
            end = string_end(text, token.end())
            if end == -1:
                return -1
            pos = end + 1
            continue
        depth += 1 if token.group() in "[{" else -1
        if depth == 0:
            return token.start()
        pos = token.end()


def interim_steps(entries: List[object]) -> List[PlanStep]:
    """Provider-declared steps with the first marked active and the rest pending."""
    steps: List[PlanStep] = []
    for entry in entries:
        if isinstance(entry, dict) and entry.get("title"):
            steps.append(
                PlanStep(title=str(entry["title"]), description=str(entry.get("description") or ""))
            )
        elif isinstance(entry, str) and entry.strip():
            steps.append(PlanStep(title=entry.strip()))
    for index, step in enumerate(steps):
        step.status = StepStatus.ACTIVE if index == 0 else StepStatus.PENDING
    return steps


@dataclass
class _OpenValue:
    """A file value whose closing quote has not arrived yet."""

    path: str
    start: int
    scan: int
    consumed: int = 0
    content: str = ""


class IncrementalExtractor:
    """Working overview/steps/files for one generation session."""

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.overview = ""
        self.steps: List[PlanStep] = []
        self.files: ProjectFiles = {}
        self.saw_files = False
        self._steps_source: Optional[str] = None
        self._text = ""
        self._overview_start = -1
        self._overview_scan = -1
        self._overview_done = False
        self._steps_start = -1
        self._steps_done = False
        self._files_cursor = -1
        self._files_done = False
        self._open: Optional[_OpenValue] = None

    @property
    def has_provider_steps(self) -> bool:
        return self._steps_source is not None

    @property
    def complete_files(self) -> ProjectFiles:
        """Entries whose closing quote has arrived."""
        return {
            path: content
            for path, content in self.files.items()
            if self._open is None or path != self._open.path
        }

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            overview=self.overview,
            steps=[step.model_copy() for step in self.steps],
            files=dict(self.files),
        )

    def update(self, text: str) -> bool:
        """Scan what was appended to the buffer; return True if any observable output changed."""
        if not text.startswith(self._text):
            self.reset()
        search_from = max(0, len(self._text) - _KEY_LOOKBACK)

        changed = False
        for part in (self._update_overview, self._update_steps, self._update_files):
            try:
                changed = part(text, search_from) or changed
            except Exception as e:  # live view only; keep the last good state
                logger.debug(event="extractor_pass_failed", part=part.__name__, error=str(e))
        self._text = text
        return changed

    def _update_overview(self, text: str, search_from: int) -> bool:
        if self._overview_done:
            return False
        if self._overview_start == -1:
            match = _OVERVIEW_KEY.search(text, search_from)
            if not match:
                return False
            self._overview_start = self._overview_scan = match.end()

        end, self._overview_scan = scan_string(text, self._overview_scan)
        if end == -1:
            return False
        self._overview_done = True
        overview = unescape_json_string(text[self._overview_start:end])
        if overview == self.overview:
            return False
        self.overview = overview
        return True

    def _update_steps(self, text: str, search_from: int) -> bool:
        if self._steps_done:
            return False
        if self._steps_start == -1:
            match = _STEPS_KEY.search(text, search_from)
            if not match:
                return False
            self._steps_start = match.end() - 1

        end = matching_close(text, self._steps_start)
        if end == -1:
            return False
        self._steps_done = True
        source = text[self._steps_start:end + 1]
        entries = json.loads(source)
        if not isinstance(entries, list):
            return False
        steps = interim_steps(entries)
        if not steps:
            return False
        self._steps_source = source
        self.steps = steps
        return True

    def _update_files(self, text: str, search_from: int) -> bool:
        if self._files_done:
            return False
        if self._files_cursor == -1:
            match = _FILES_KEY.search(text, search_from)
            if not match:
                return False
            self.saw_files = True
            self._files_cursor = match.end()

        changed = False
        while True:
            if self._open is None and not self._open_next_value(text):
                return changed
            if self._advance_open_value(text):
                changed = True
            if self._open is not None:
                return changed

    def _open_next_value(self, text: str) -> bool:
        """Position on the next `"path": "` pair after the cursor, if it has arrived."""
        n = len(text)
        i = _SEPARATORS.match(text, self._files_cursor).end()
        if i >= n:
            return False
        if text[i] != '"':
            # closing brace, or a non-string structure the live view does not follow
            self._files_done = True
            return False
        key_end = string_end(text, i + 1)
        if key_end == -1:
            return False
        j = _WHITESPACE.match(text, key_end + 1).end()
        if j >= n:
            return False
        if text[j] != ":":
            self._files_done = True
            return False
        j = _WHITESPACE.match(text, j + 1).end()
        if j >= n:
            return False
        if text[j] != '"':
            self._files_done = True
            return False

        path = unescape_json_string(text[i + 1:key_end])
        if not path:
            self._files_done = True
            return False
        self._open = _OpenValue(path=path, start=j + 1, scan=j + 1)
        return True

    def _advance_open_value(self, text: str) -> bool:
        value = self._open
        end, value.scan = scan_string(text, value.scan)
        raw_from = value.start + value.consumed

        if end != -1:
            tail, _ = decode_escapes(text[raw_from:end])
            content = value.content + tail
            self._open = None
            self._files_cursor = end + 1
            if self.files.get(value.path) == content:
                return False
            self.files[value.path] = content
            return True

        decoded, used = decode_escapes(text[raw_from:value.scan], final=False)
        value.consumed += used
        if not decoded and value.path in self.files:
            return False
        value.content += decoded
        self.files[value.path] = value.content
        return True
