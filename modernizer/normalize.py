"""
Core normalization logic lives here.

Responsibilities:
- upload decoding (charset detection)
- modern dialect detection (marker token)
- marker stripping
- line classification into tagged lines
- explicit keyword insertion (SET / DO)
- rewrite reporting
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from charset_normalizer import from_bytes

from .rules import ASSIGNMENT_KEYWORD, INVOCATION_KEYWORD, MARKER, MARKER_PHRASE

logger = logging.getLogger(__name__)


class LineKind(str, Enum):
    COMMENT = "comment"
    ASSIGNMENT = "assignment"
    INVOCATION = "invocation"
    EXPLICIT = "explicit"
    OTHER = "other"


@dataclass(frozen=True)
class TaggedLine:
    number: int
    kind: LineKind
    indent: str
    body: str
    ending: str

    @property
    def text(self) -> str:
        return self.indent + self.body + self.ending


_INDENT = re.compile(r"[ \t]*")
_COMMENT = re.compile(r"(?://|;|##?;|/\*|\*)")
# keyword (with optional postconditional) followed by an argument, never by "="
_EXPLICIT = re.compile(r"(?:set|s|do|d)(?::\S+)?\s+(?![\s=])|&sql\s*\(", re.IGNORECASE)

_NAME = re.compile(r"%?[A-Za-z][A-Za-z0-9]*")
_CLASS_REF = re.compile(r"##class\([\w.%]+\)\.", re.IGNORECASE)
_ASSIGNMENT_TAIL = re.compile(r"\s*=\s*\S.*")
_INVOCATION_TAIL = re.compile(r"\s*(?://.*|;.*)?")

_KEYWORDS = {
    LineKind.ASSIGNMENT: ASSIGNMENT_KEYWORD,
    LineKind.INVOCATION: INVOCATION_KEYWORD,
}


def _sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def decode_source(raw: bytes) -> str:
    """
    Decode uploaded source bytes.

    Rules:
    - A UTF-8 BOM is honoured and dropped.
    - Otherwise detect encoding best-effort via charset-normalizer.
    - If decode fails, fall back to UTF-8 with replacement characters.
    """
    if raw.startswith(b"\xef\xbb\xbf"):
        return raw.decode("utf-8-sig", errors="replace")

    match = from_bytes(raw).best()
    decode_used = match.encoding if match is not None else "utf-8"
    try:
        return raw.decode(decode_used)
    except (UnicodeDecodeError, LookupError):
        logger.warning("decode as %s failed, falling back to utf-8", decode_used)
        return raw.decode("utf-8", errors="replace")


def is_modern(text: str) -> bool:
    return MARKER in text


def strip_marker(text: str) -> str:
    """Remove every occurrence of the marker phrase, keeping the line sequence."""
    return text.replace(MARKER_PHRASE, "")


def _group_end(text: str, start: int) -> Optional[int]:
    """Index just past the parenthesis group opening at `start`; string literals are skipped."""
    depth = 0
    in_string = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            # a doubled "" closes then reopens the literal
            if ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return i + 1
    return None


def _scan_reference(body: str) -> Optional[tuple[int, bool]]:
    """
    Scan a leading variable, property or method reference.

    Accepts `..` / `^` / `##class(Name).` prefixes, dotted members, and a
    parenthesis group after any member (nested groups included). Returns the end
    offset and whether the reference ends with a group, or None.
    """
    ref = _CLASS_REF.match(body)
    if ref:
        pos = ref.end()
    elif body.startswith(".."):
        pos = 2
    elif body.startswith("^"):
        pos = 1
    else:
        pos = 0

    while True:
        name = _NAME.match(body, pos)
        if name is None:
            return None
        pos = name.end()
        grouped = False
        if body.startswith("(", pos):
            end = _group_end(body, pos)
            if end is None:
                return None
            pos = end
            grouped = True
        if not body.startswith(".", pos):
            return pos, grouped
        pos += 1


def classify_line(body: str) -> LineKind:
    """
    Tag a single line.

    Order matters: comments and already explicit statements win over the implicit
    forms, and assignments are tested before invocations so that
    `x = foo(1)` is never read as a call.
    """
    body = body.lstrip(" \t")
    if _COMMENT.match(body):
        return LineKind.COMMENT
    if _EXPLICIT.match(body):
        return LineKind.EXPLICIT

    scanned = _scan_reference(body)
    if scanned is None:
        return LineKind.OTHER
    end, grouped = scanned
    if _ASSIGNMENT_TAIL.fullmatch(body, end):
        return LineKind.ASSIGNMENT
    if grouped and _INVOCATION_TAIL.fullmatch(body, end):
        return LineKind.INVOCATION
    return LineKind.OTHER


def tag_lines(text: str) -> List[TaggedLine]:
    """
    Split text into tagged lines.

    Joining `line.text` for every returned line gives back the input exactly,
    including CRLF endings and a missing final newline.
    """
    pieces = text.split("\n")
    last = len(pieces) - 1
    tagged: List[TaggedLine] = []

    for i, raw in enumerate(pieces):
        if i == last:
            if raw == "":
                break
            ending = ""
        elif raw.endswith("\r"):
            raw = raw[:-1]
            ending = "\r\n"
        else:
            ending = "\n"

        indent = _INDENT.match(raw).group(0)
        body = raw[len(indent):]
        tagged.append(TaggedLine(i + 1, classify_line(body), indent, body, ending))

    return tagged


def rewrite_line(line: TaggedLine) -> str:
    keyword = _KEYWORDS.get(line.kind)
    if keyword is None:
        return line.text
    return f"{line.indent}{keyword} {line.body}{line.ending}"


def _rewrite(text: str) -> tuple[str, List[TaggedLine]]:
    tagged = tag_lines(strip_marker(text))
    return "".join(rewrite_line(line) for line in tagged), tagged


def modern_to_objectscript(text: str, name: Optional[str] = None) -> str:
    """
    Convert modern dialect source into verbose statement syntax.

    Rules:
    - Text without the marker is returned unchanged.
    - Otherwise the marker phrase is stripped, then every implicit assignment gets
      SET and every implicit invocation gets DO, each on the output of the
      previous step.
    - Never raises; a bad rewrite only shows up as a remote compile error.
    """
    if not is_modern(text):
        return text

    normalized, tagged = _rewrite(text)
    logger.debug(
        "normalized %s: %d assignment(s), %d invocation(s)",
        name or "<unnamed>",
        sum(1 for line in tagged if line.kind is LineKind.ASSIGNMENT),
        sum(1 for line in tagged if line.kind is LineKind.INVOCATION),
    )
    return normalized


def to_content_lines(text: str) -> List[str]:
    """Line array in the shape the remote store expects for a non-encoded document."""
    return re.split(r"\r?\n", text)


def normalize_document(name: str, content: str) -> Dict[str, Any]:
    """
    Normalize one document and report what changed.
    Returns a dict matching the API's response envelope.
    """
    modern = is_modern(content)
    if modern:
        normalized, tagged = _rewrite(content)
    else:
        normalized, tagged = content, tag_lines(content)

    rewrites: list[dict] = []
    if modern:
        for line in tagged:
            keyword = _KEYWORDS.get(line.kind)
            if keyword is None:
                continue
            rewrites.append({
                "row": line.number,
                "column": len(line.indent) + 1,
                "issue": f"implicit_{line.kind.value}",
                "value": line.body,
                "action": f"inserted_{keyword.lower()}",
            })

    assignments = sum(1 for item in rewrites if item["issue"] == "implicit_assignment")

    return {
        "document": {
            "name": name,
            "sha256": _sha256_hex(normalized.encode("utf-8")),
            "content": normalized,
            "lines": to_content_lines(normalized),
        },
        "report": {
            "summary": {
                "lines": len(tagged),
                "modern": modern,
                "marker_stripped": modern,
                "assignments_rewritten": assignments,
                "invocations_rewritten": len(rewrites) - assignments,
                "deterministic": True,
            },
            "rewrites": rewrites,
        },
    }
