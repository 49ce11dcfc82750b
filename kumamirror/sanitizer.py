"""Repair a JavaScript object-literal payload into strict JSON.

The upstream page embeds its state as a JavaScript expression, not JSON:
keys may be unquoted, strings single-quoted, trailing commas and comments
are legal, and a few tokens (``undefined``, ``NaN``, ``new Date(...)``) have
no JSON spelling. ``sanitize_json_string`` rewrites such text in one pass.

The scanner is a small state machine. Every character is consumed in one of
three states:

* structural - punctuation, numbers, identifiers and whitespace, where the
  repairs below are applied;
* in-string - a ``'``, ``"`` or backtick literal, decoded to its value and
  re-emitted as a JSON string, so nothing inside it is ever rewritten;
* in-comment - ``//`` or ``/* */``, dropped.

Repairs applied in the structural state:

=====================  =================================================
JavaScript             JSON
=====================  =================================================
``{key: 1}``           ``{"key": 1}`` (also ``'key'`` and numeric keys)
``'it\\'s'`` strings   double-quoted, ``"`` escaped, ``\\'`` unescaped
``[1, 2,]``            ``[1, 2]`` (any run of trailing commas)
``[1,,2]``             ``[1,null,2]``
``undefined``          ``null``
``NaN``                ``null``
``Infinity``           ``null`` (sign dropped)
``new Date("...")``    ISO-8601 UTC string; naive strings are UTC
``new Date(1700..)``   epoch milliseconds as ISO-8601 UTC string
``new Date(y, m, d)``  components (month zero-based) as ISO-8601 UTC
``new Date()``         ``null`` (also any unparseable argument)
``0x1F`` / ``.5``      ``31`` / ``0.5``; leading ``+``, zeros and ``_``
                       separators dropped
=====================  =================================================

The literal and date tables are configurable through :class:`Sanitizer`.
Identifiers found in neither table are emitted untouched so the strict
parser rejects them instead of data being invented.

Running the sanitizer on its own output returns that output unchanged.
"""

import json
import logging
import re
from typing import Any, Iterable, Mapping, Optional

from kumamirror.timestamps import from_components, from_epoch_millis, parse_timestamp

logger = logging.getLogger("kumamirror.sanitizer")

LITERAL_TOKENS: dict[str, str] = {
    "undefined": "null",
    "NaN": "null",
    "Infinity": "null",
}

DATE_CALLEES: tuple[str, ...] = ("Date",)

_QUOTES = "\"'`"
_OPENERS = "{[("
_CLOSERS = "}])"

_IDENT_RE = re.compile(r"[A-Za-z_$][\w$]*")
_NUMBER_RE = re.compile(
    r"0[xX][0-9a-fA-F][0-9a-fA-F_]*|0[bB][01][01_]*|0[oO][0-7][0-7_]*"
    r"|(?:\d[\d_]*(?:\.[\d_]*)?|\.\d[\d_]*)(?:[eE][+-]?\d+)?"
)
_DECIMAL_RE = re.compile(r"(\d*)(?:\.(\d*))?([eE][+-]?\d+)?")
_HEX_RE = re.compile(r"[0-9a-fA-F]+")

_SIMPLE_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "b": "\b",
    "f": "\f",
    "v": "\x0b",
}
_LINE_TERMINATORS = ("\r\n", "\n", "\r", "\u2028", "\u2029")


def skip_insignificant(text: str, pos: int) -> int:
    """Return the index of the next character that is not whitespace or a comment."""
    n = len(text)
    while pos < n:
        ch = text[pos]
        if ch.isspace():
            pos += 1
            continue
        if ch == "/" and pos + 1 < n:
            nxt = text[pos + 1]
            if nxt == "/":
                end = text.find("\n", pos + 2)
                pos = n if end == -1 else end
                continue
            if nxt == "*":
                end = text.find("*/", pos + 2)
                pos = n if end == -1 else end + 2
                continue
        break
    return pos


def _skip_string(text: str, pos: int) -> int:
    """Return the index just past the string literal opening at ``pos``, or -1."""
    quote = text[pos]
    n = len(text)
    pos += 1
    while pos < n:
        ch = text[pos]
        if ch == "\\":
            pos += 2
            continue
        if ch == quote:
            return pos + 1
        pos += 1
    return -1


def find_balanced_end(text: str, start: int) -> int:
    """Find the bracket closing the one at ``start``.

    Brackets inside string literals and comments are ignored. Returns the
    index of the closing bracket, or -1 when the text ends first.
    """
    depth = 0
    pos = start
    n = len(text)
    while pos < n:
        ch = text[pos]
        if ch in _QUOTES:
            pos = _skip_string(text, pos)
            if pos == -1:
                return -1
            continue
        if ch == "/" and pos + 1 < n and text[pos + 1] in "/*":
            pos = skip_insignificant(text, pos)
            continue
        if ch in _OPENERS:
            depth += 1
        elif ch in _CLOSERS:
            depth -= 1
            if depth == 0:
                return pos
        pos += 1
    return -1


def _comma_run(text: str, pos: int) -> tuple[int, int, int]:
    """Consume the commas starting at ``pos`` and anything insignificant between them.

    Returns the comma count, the index just past the last comma and the
    index of the next significant character.
    """
    commas = 0
    after = pos
    while pos < len(text) and text[pos] == ",":
        commas += 1
        after = pos + 1
        pos = skip_insignificant(text, after)
    return commas, after, pos


def _last_char(out: list[str]) -> str:
    for chunk in reversed(out):
        if chunk:
            return chunk[-1]
    return ""


def _last_significant(out: list[str]) -> str:
    for chunk in reversed(out):
        stripped = chunk.rstrip()
        if stripped:
            return stripped[-1]
    return ""


def _is_word_char(ch: str) -> bool:
    return ch == "$" or ch.isalnum() or ch == "_"


def _join_surrogates(value: str) -> str:
    """Pair up ``\\uD83D\\uDE00``-style halves; unpaired halves become U+FFFD."""
    return value.encode("utf-16-le", "surrogatepass").decode("utf-16-le", "replace")


def _read_escape(text: str, pos: int) -> tuple[str, int]:
    """Decode the escape whose backslash sits at ``pos``.

    Returns the decoded text and the index after the escape.
    """
    nxt = pos + 1
    if nxt >= len(text):
        return "", nxt
    ch = text[nxt]
    for terminator in _LINE_TERMINATORS:
        if text.startswith(terminator, nxt):
            return "", nxt + len(terminator)
    if ch in _SIMPLE_ESCAPES:
        return _SIMPLE_ESCAPES[ch], nxt + 1
    if ch == "0" and not text[nxt + 1:nxt + 2].isdigit():
        return "\x00", nxt + 1
    if ch == "x":
        digits = text[nxt + 1:nxt + 3]
        if len(digits) == 2 and _HEX_RE.fullmatch(digits):
            return chr(int(digits, 16)), nxt + 3
        return ch, nxt + 1
    if ch == "u":
        if text.startswith("{", nxt + 1):
            close = text.find("}", nxt + 2)
            digits = text[nxt + 2:close] if close != -1 else ""
            if digits and _HEX_RE.fullmatch(digits) and int(digits, 16) <= 0x10FFFF:
                return chr(int(digits, 16)), close + 1
            return ch, nxt + 1
        digits = text[nxt + 1:nxt + 5]
        if len(digits) == 4 and _HEX_RE.fullmatch(digits):
            return chr(int(digits, 16)), nxt + 5
        return ch, nxt + 1
    return ch, nxt + 1


def _read_string(text: str, pos: int) -> tuple[Optional[str], int]:
    """Decode the string literal opening at ``pos``.

    Returns ``(value, end)``; ``value`` is None when the literal never closes.
    """
    quote = text[pos]
    n = len(text)
    parts: list[str] = []
    pos += 1
    chunk_start = pos
    while pos < n:
        ch = text[pos]
        if ch == quote:
            parts.append(text[chunk_start:pos])
            return _join_surrogates("".join(parts)), pos + 1
        if ch == "\\":
            parts.append(text[chunk_start:pos])
            decoded, pos = _read_escape(text, pos)
            parts.append(decoded)
            chunk_start = pos
            continue
        pos += 1
    return None, n


def _normalize_number(token: str) -> str:
    raw = token.replace("_", "")
    if raw[:2].lower() in ("0x", "0b", "0o"):
        return str(int(raw, 0))
    match = _DECIMAL_RE.fullmatch(raw)
    if match is None:
        return raw
    integer, fraction, exponent = match.groups()
    result = integer.lstrip("0") or "0"
    if fraction:
        result += "." + fraction
    return result + (exponent or "")


def _date_from_args(args: list[Any]) -> Optional[str]:
    """Map ``Date`` constructor arguments to an ISO-8601 UTC string."""
    if not args:
        return None
    numeric = all(isinstance(a, (int, float)) and not isinstance(a, bool) for a in args)
    try:
        if len(args) == 1 and isinstance(args[0], str):
            parsed = parse_timestamp(args[0])
        elif len(args) == 1 and numeric:
            parsed = from_epoch_millis(args[0])
        elif numeric:
            parsed = from_components(*(int(a) for a in args[:7]))
        else:
            parsed = None
    except (OverflowError, ValueError):
        parsed = None
    return parsed.isoformat() if parsed else None


class Sanitizer:
    """Configurable JavaScript-literal to JSON repairer.

    ``literal_tokens`` maps bare identifiers to their JSON replacement text;
    ``date_callees`` names the constructors whose calls become ISO strings.
    """

    def __init__(
        self,
        literal_tokens: Optional[Mapping[str, str]] = None,
        date_callees: Optional[Iterable[str]] = None,
    ):
        self.literal_tokens = dict(LITERAL_TOKENS if literal_tokens is None else literal_tokens)
        self.date_callees = tuple(DATE_CALLEES if date_callees is None else date_callees)

    def sanitize(self, text: str) -> str:
        out: list[str] = []
        pos = 0
        n = len(text)

        while pos < n:
            ch = text[pos]

            if ch in _QUOTES:
                value, end = _read_string(text, pos)
                if value is None:
                    # Unterminated literal: leave it for the parser to reject.
                    out.append(text[pos:])
                    break
                out.append(json.dumps(value, ensure_ascii=False))
                pos = end
                continue

            if ch == "/" and pos + 1 < n and text[pos + 1] == "/":
                end = text.find("\n", pos + 2)
                pos = n if end == -1 else end
                continue

            if ch == "/" and pos + 1 < n and text[pos + 1] == "*":
                end = text.find("*/", pos + 2)
                # A block comment still separates the tokens around it.
                out.append(" ")
                pos = n if end == -1 else end + 2
                continue

            if ch == ",":
                commas, after, nxt = _comma_run(text, pos)
                pos = after
                if nxt < n and text[nxt] in "}]":
                    continue
                # Elided array elements (holes) read as null.
                if _last_significant(out) == "[":
                    out.append("null," * commas)
                else:
                    out.append("," + "null," * (commas - 1))
                continue

            if ch in "+-":
                nxt = skip_insignificant(text, pos + 1)
                ident = _IDENT_RE.match(text, nxt)
                if ident and ident.group() in self.literal_tokens:
                    pos += 1
                    continue
                if ch == "+" and (
                    _NUMBER_RE.match(text, nxt) or text.startswith(("+", "-"), nxt)
                ):
                    pos += 1
                    continue
                out.append(ch)
                pos += 1
                continue

            if ch == "." and _is_word_char(_last_char(out)):
                # Member access such as ``x1.5``, not a ``.5`` literal.
                out.append(ch)
                pos += 1
                continue

            number = _NUMBER_RE.match(text, pos)
            if number:
                normalized = _normalize_number(number.group())
                pos = number.end()
                if self._is_key(text, pos):
                    out.append(json.dumps(normalized))
                else:
                    out.append(normalized)
                continue

            ident = _IDENT_RE.match(text, pos)
            if ident:
                pos = self._emit_identifier(text, ident, out)
                continue

            out.append(ch)
            pos += 1

        return "".join(out)

    @staticmethod
    def _is_key(text: str, pos: int) -> bool:
        nxt = skip_insignificant(text, pos)
        return nxt < len(text) and text[nxt] == ":"

    def _emit_identifier(self, text: str, ident: "re.Match[str]", out: list[str]) -> int:
        name = ident.group()
        pos = ident.end()

        if self._is_key(text, pos):
            out.append(json.dumps(name, ensure_ascii=False))
            return pos

        callee_end = pos
        callee = name
        if name == "new":
            nxt = skip_insignificant(text, pos)
            target = _IDENT_RE.match(text, nxt)
            if target:
                callee, callee_end = target.group(), target.end()
        if callee in self.date_callees:
            paren = skip_insignificant(text, callee_end)
            if paren < len(text) and text[paren] == "(":
                close = find_balanced_end(text, paren)
                if close != -1:
                    out.append(self._rewrite_date(text[paren + 1:close]))
                    return close + 1

        if name in self.literal_tokens:
            out.append(self.literal_tokens[name])
            return pos

        out.append(name)
        return pos

    def _rewrite_date(self, arguments: str) -> str:
        try:
            args = json.loads("[" + self.sanitize(arguments) + "]")
        except ValueError:
            logger.debug("Unparseable Date arguments: %s", arguments[:80])
            return "null"
        iso = _date_from_args(args)
        return json.dumps(iso) if iso else "null"


_default_sanitizer = Sanitizer()


def sanitize_json_string(text: str) -> str:
    """Repair ``text`` into strict JSON with the default token tables."""
    return _default_sanitizer.sanitize(text)
