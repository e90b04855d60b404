"""
Schema-aware JSON parser for LLM output.

LLMs frequently produce JSON with unescaped double quotes inside string
values. A generic parser can't tell whether a quote ends the string or is
part of its content. This parser uses the declared field order to anchor
string boundaries: a closing quote is only accepted when it is followed by
the next expected field name (or the object's closing brace for the last
field).

Known limitation: a value that literally contains the anchor sequence
(a quote followed by ``, "<next field>":``) is split at that point.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)

STRING = "string"
STRING_LIST = "string[]"
FIELD_KINDS = (STRING, STRING_LIST)

WHITESPACE = " \t\n\r"

# Surrogate pairs are matched first so astral characters decode to one code point.
_ESCAPE_RE = re.compile(
    r"\\(u[dD][89abAB][0-9a-fA-F]{2}\\u[dD][c-fC-F][0-9a-fA-F]{2}|u[0-9a-fA-F]{4}|.)",
    re.DOTALL,
)

_SIMPLE_ESCAPES = {
    '"': '"',
    "\\": "\\",
    "/": "/",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "b": "\b",
    "f": "\f",
}


@dataclass(frozen=True)
class FieldDef:
    name: str
    kind: str = STRING


class ParseError(ValueError):
    """Raised when the input doesn't match the envelope or the declared schema."""

    def __init__(self, message: str, position: int):
        super().__init__(f"{message} (at position {position})")
        self.message = message
        self.position = position

    def excerpt(self, text: str, radius: int = 40) -> str:
        """
        Slice of the input around the failure offset, for log lines.

        Args:
            text: The input that was being parsed
            radius: Number of characters to keep on each side

        Returns:
            str: The surrounding text with a ``>>>`` marker at the offset
        """
        start = max(self.position - radius, 0)
        end = min(self.position + radius, len(text))
        return f"{text[start:self.position]}>>>{text[self.position:end]}"


def validate_schema(fields: Sequence[FieldDef]) -> None:
    """
    Fail fast on a schema the parser can't anchor on.

    Raises:
        ValueError: If the schema is empty, has duplicate, empty or
            non-string names, or uses an unknown field kind
    """
    if not fields:
        raise ValueError("schema must declare at least one field")

    seen = set()
    for field in fields:
        if not isinstance(field.name, str) or not field.name:
            raise ValueError(f"schema field names must be non-empty strings, got {field.name!r}")
        if field.kind not in FIELD_KINDS:
            raise ValueError(f"Unknown kind '{field.kind}' for field '{field.name}'")
        if field.name in seen:
            raise ValueError(f"Duplicate field name in schema: '{field.name}'")
        seen.add(field.name)


def unescape(raw: str) -> str:
    """
    Decode JSON escape sequences in a raw string segment.

    Unknown escapes pass through without the backslash rather than failing.
    """

    def replace(match):
        seq = match.group(1)
        if seq[0] == "u" and len(seq) > 1:
            if len(seq) == 11:
                high = int(seq[1:5], 16)
                low = int(seq[7:11], 16)
                return chr(0x10000 + ((high - 0xD800) << 10) + (low - 0xDC00))
            return chr(int(seq[1:], 16))
        return _SIMPLE_ESCAPES.get(seq, seq)

    return _ESCAPE_RE.sub(replace, raw)


def parse_items_array(json_text: str, fields: Sequence[FieldDef]) -> List[Dict[str, Any]]:
    """
    Parse an ``{"items": [...]}`` envelope using the schema as string anchors.

    Args:
        json_text: The envelope text, already stripped of any surrounding prose
        fields: Ordered field declarations every item is expected to follow

    Returns:
        list: One dict per item, keyed by field name in schema order

    Raises:
        ValueError: If the schema itself is malformed
        ParseError: On the first structural or key mismatch
    """
    validate_schema(fields)
    return SchemaJsonParser(json_text, fields).parse()


class SchemaJsonParser:
    """Single-use parser; the cursor is the only mutable state."""

    def __init__(self, json_text: str, fields: Sequence[FieldDef]):
        self.json = json_text
        self.fields = list(fields)
        self.pos = 0

    def parse(self) -> List[Dict[str, Any]]:
        # Navigate to the items array: { "items": [ ... ] }
        self.skip_until("{")
        self.advance()
        self.expect_key("items")
        self.skip_until("[")
        self.advance()
        self.skip_whitespace()

        items = []
        while self.peek() != "]":
            if self.at_end():
                raise ParseError("Unterminated items array", self.pos)
            items.append(self.parse_object())
            self.skip_whitespace()
            self.try_consume(",")
            self.skip_whitespace()

        logger.debug(f"Parsed {len(items)} items with {len(self.fields)}-field schema")
        return items

    def parse_object(self) -> Dict[str, Any]:
        self.skip_until("{")
        self.advance()
        self.skip_whitespace()

        item = {}
        for i, field in enumerate(self.fields):
            next_field = self.fields[i + 1].name if i + 1 < len(self.fields) else None

            self.expect_key(field.name)
            self.skip_whitespace()

            if field.kind == STRING:
                item[field.name] = self.read_anchored_string(next_field)
            else:
                item[field.name] = self.read_string_array()

            self.skip_whitespace()
            self.try_consume(",")
            self.skip_whitespace()

        self.skip_until("}", message="Unterminated object")
        self.advance()
        return item

    def read_anchored_string(self, next_field: Optional[str]) -> str:
        """
        Read a string value using the next field name as an anchor.

        A ``"`` is the real closing quote only if the lookahead finds the
        expected continuation:
          - next_field set: ``, "next_field":``
          - next_field is None (last field): ``}``, ``, }``, ``]`` or end of input

        Any other ``"`` is embedded content and is kept as an escaped quote.
        """
        self.expect('"')
        self.advance()
        start = self.pos
        parts = []
        seg_start = self.pos

        while not self.at_end():
            ch = self.json[self.pos]

            if ch == "\\":
                # Escape sequence, consume both chars
                self.pos += 2
                continue

            if ch == '"':
                parts.append(self.json[seg_start:self.pos])
                if self.is_closing_quote(next_field):
                    self.advance()
                    return unescape("".join(parts))
                parts.append('\\"')
                self.pos += 1
                seg_start = self.pos
                continue

            self.pos += 1

        raise ParseError("Unterminated string", start)

    def is_closing_quote(self, next_field: Optional[str]) -> bool:
        j = self._skip_whitespace_from(self.pos + 1)
        text = self.json

        if next_field is not None:
            if not text.startswith(",", j):
                return False
            j = self._skip_whitespace_from(j + 1)
            if not text.startswith('"', j):
                return False
            j += 1
            if not text.startswith(next_field, j):
                return False
            j += len(next_field)
            if not text.startswith('"', j):
                return False
            j = self._skip_whitespace_from(j + 1)
            return text.startswith(":", j)

        # Last field
        if j >= len(text):
            return True
        if text[j] in "}]":
            return True
        if text[j] == ",":
            j = self._skip_whitespace_from(j + 1)
            return text.startswith("}", j)
        return False

    def read_string_array(self) -> List[str]:
        self.expect("[")
        self.advance()
        self.skip_whitespace()

        values = []
        while self.peek() != "]":
            if self.at_end():
                raise ParseError("Unterminated array", self.pos)
            values.append(self.read_simple_string())
            self.skip_whitespace()
            self.try_consume(",")
            self.skip_whitespace()

        self.advance()
        return values

    def read_simple_string(self) -> str:
        """Read a regular JSON string (no embedded-quote handling)."""
        self.expect('"')
        self.advance()
        start = self.pos

        while not self.at_end():
            ch = self.json[self.pos]
            if ch == "\\":
                self.pos += 2
                continue
            if ch == '"':
                value = self.json[start:self.pos]
                self.advance()
                return unescape(value)
            self.pos += 1

        raise ParseError("Unterminated string", start)

    def expect_key(self, name: str) -> None:
        self.skip_until('"')
        self.advance()
        key_start = self.pos
        key_end = self.json.find('"', key_start)
        if key_end == -1:
            raise ParseError("Unterminated key", key_start)

        key = self.json[key_start:key_end]
        if key != name:
            raise ParseError(f'Expected key "{name}", got "{key}"', key_start)

        self.pos = key_end + 1
        self.skip_whitespace()
        self.expect(":")
        self.advance()
        self.skip_whitespace()

    # -- Cursor helpers --

    def peek(self) -> Optional[str]:
        if self.pos >= len(self.json):
            return None
        return self.json[self.pos]

    def at_end(self) -> bool:
        return self.pos >= len(self.json)

    def advance(self) -> None:
        self.pos += 1

    def expect(self, ch: str) -> None:
        current = self.peek()
        if current != ch:
            raise ParseError(f"Expected '{ch}', got '{current or 'EOF'}'", self.pos)

    def try_consume(self, ch: str) -> bool:
        if self.peek() == ch:
            self.pos += 1
            return True
        return False

    def skip_whitespace(self) -> None:
        self.pos = self._skip_whitespace_from(self.pos)

    def skip_until(self, ch: str, message: Optional[str] = None) -> None:
        found = self.json.find(ch, self.pos)
        if found == -1:
            self.pos = len(self.json)
            raise ParseError(message or f"Expected '{ch}' not found", self.pos)
        self.pos = found

    def _skip_whitespace_from(self, j: int) -> int:
        while j < len(self.json) and self.json[j] in WHITESPACE:
            j += 1
        return j
