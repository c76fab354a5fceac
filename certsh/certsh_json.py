"""
A span-based JSON parser with path queries, normalized dumping and an XML
projection.

Nodes never copy text out of the document: every node stores an
(offset, length) span into the source string, and values are un-escaped only
when a query asks for them. Parse failures are reported as a ParseResult
carrying the offset of the offending character.
"""
import re
import string
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Literal, Optional, Tuple
from xml.sax.saxutils import escape as _xml_escape

# Deeper documents are rejected; the parser and the tree walkers recurse.
MAX_NESTING = 256

_WS = " \t\r\n"
_DIGITS = "0123456789"
_HEX = set(string.hexdigits)
_SIMPLE_ESCAPES = {
    '"': '"', "\\": "\\", "/": "/",
    "b": "\b", "f": "\f", "n": "\n", "r": "\r", "t": "\t",
}
# Runs of characters that need no attention inside a quoted string.
_PLAIN_RUN = {
    '"': re.compile(r'[^"\\\x00-\x1f]*'),
    "'": re.compile(r"[^'\\\x00-\x1f]*"),
}
_INDEX_RE = re.compile(r"\[\s*(\d+)\s*\]")
_SEGMENT_RE = re.compile(r"([^\[\]]*)((?:\[\s*\d+\s*\])*)")
_XML_NAME_BAD = re.compile(r"[^A-Za-z0-9_.\-]")
# Code points XML 1.0 does not allow in character data.
_XML_TEXT_BAD = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff]")


class PropertyType(Enum):
    OBJECT = "object"
    ARRAY = "array"
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    NULL = "null"


_XML_CODES = {
    PropertyType.OBJECT: "o",
    PropertyType.ARRAY: "a",
    PropertyType.STRING: "s",
    PropertyType.NUMBER: "n",
    PropertyType.BOOLEAN: "b",
    PropertyType.NULL: "u",
}


def _unescape(raw: str) -> str:
    """Materializes the text of a quoted span. The span was validated by the parser."""
    if "\\" not in raw:
        return raw
    out: List[str] = []
    i = 0
    n = len(raw)
    while i < n:
        c = raw[i]
        if c != "\\" or i + 1 >= n:
            out.append(c)
            i += 1
            continue
        e = raw[i + 1]
        if e == "u" and i + 6 <= n:
            code = int(raw[i + 2:i + 6], 16)
            i += 6
            # Join a surrogate pair into one character.
            if 0xD800 <= code <= 0xDBFF and raw.startswith("\\u", i):
                try:
                    low = int(raw[i + 2:i + 6], 16)
                except ValueError:
                    low = -1
                if 0xDC00 <= low <= 0xDFFF:
                    code = 0x10000 + ((code - 0xD800) << 10) + (low - 0xDC00)
                    i += 6
            out.append(chr(code))
            continue
        out.append(_SIMPLE_ESCAPES.get(e, e))
        i += 2
    return "".join(out)


def _quote(value: str) -> str:
    """Quotes and escapes a string as standard JSON."""
    out = ['"']
    for c in value:
        if c == '"':
            out.append('\\"')
        elif c == "\\":
            out.append("\\\\")
        elif c == "\n":
            out.append("\\n")
        elif c == "\r":
            out.append("\\r")
        elif c == "\t":
            out.append("\\t")
        elif c == "\b":
            out.append("\\b")
        elif c == "\f":
            out.append("\\f")
        elif ord(c) < 0x20 or 0xD800 <= ord(c) <= 0xDFFF:
            out.append(f"\\u{ord(c):04x}")
        else:
            out.append(c)
    out.append('"')
    return "".join(out)


# =================================================================
# Tree
# =================================================================

class Property:
    """
    One node of a parsed document.

    offset/length locate the value in the source: the braces for objects and
    arrays, the characters between the quotes for strings, the literal for
    everything else. Object members also carry the span of their name.
    """
    __slots__ = ("type", "offset", "length", "name_offset", "name_length",
                 "name_escaped", "children")

    def __init__(self, ptype: PropertyType, offset: int = 0, length: int = 0):
        self.type = ptype
        self.offset = offset
        self.length = length
        self.name_offset: Optional[int] = None
        self.name_length: int = 0
        self.name_escaped: bool = False
        self.children: List["Property"] = []

    @property
    def is_container(self) -> bool:
        return self.type in (PropertyType.OBJECT, PropertyType.ARRAY)

    def raw(self, source: str) -> str:
        return source[self.offset:self.offset + self.length]

    def name(self, source: str) -> Optional[str]:
        if self.name_offset is None:
            return None
        raw = source[self.name_offset:self.name_offset + self.name_length]
        return _unescape(raw) if self.name_escaped else raw

    def value(self, source: str) -> str:
        """Scalar text for leaves, the verbatim source span for containers."""
        raw = self.raw(source)
        if self.type is PropertyType.STRING:
            return _unescape(raw)
        return raw

    def __repr__(self) -> str:
        return f"Property({self.type.value}, {self.offset}, {self.length}, children={len(self.children)})"


@dataclass
class ParseResult:
    """The structured result of a parse."""
    status: Literal['success', 'error']
    root: Optional[Property] = None
    error_offset: Optional[int] = None
    error_message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == 'success'

    def format_error(self) -> str:
        if self.status != 'error':
            return ""
        return f"JSON error at offset {self.error_offset}: {self.error_message or 'syntax error'}"


# =================================================================
# Parser
# =================================================================

class _JsonSyntaxError(Exception):
    def __init__(self, offset: int, message: str):
        super().__init__(message)
        self.offset = offset
        self.message = message


class _Parser:
    def __init__(self, text: str, relaxed: bool):
        self.text = text
        self.n = len(text)
        self.relaxed = relaxed
        self.pos = 0

    def fail(self, offset: int, message: str):
        raise _JsonSyntaxError(offset, message)

    def skip_ws(self):
        text, n, pos = self.text, self.n, self.pos
        while pos < n and text[pos] in _WS:
            pos += 1
        self.pos = pos

    def parse_document(self) -> Property:
        self.skip_ws()
        if self.pos >= self.n:
            self.fail(self.pos, "empty document")
        root = self.parse_value(0)
        self.skip_ws()
        if self.pos < self.n:
            self.fail(self.pos, "unexpected characters after the document")
        return root

    def parse_value(self, depth: int) -> Property:
        if self.pos >= self.n:
            self.fail(self.pos, "unexpected end of text")
        ch = self.text[self.pos]
        if ch == "{":
            return self.parse_container(depth + 1, PropertyType.OBJECT, "}")
        if ch == "[":
            return self.parse_container(depth + 1, PropertyType.ARRAY, "]")
        if ch == '"' or (ch == "'" and self.relaxed):
            offset, length = self.parse_quoted(ch)
            return Property(PropertyType.STRING, offset, length)
        if ch == "-" or ch in _DIGITS:
            return self.parse_number()
        for literal, ptype in (("true", PropertyType.BOOLEAN),
                               ("false", PropertyType.BOOLEAN),
                               ("null", PropertyType.NULL)):
            if self.text.startswith(literal, self.pos):
                node = Property(ptype, self.pos, len(literal))
                self.pos += len(literal)
                return node
        self.fail(self.pos, f"unexpected character {ch!r}")

    def parse_number(self) -> Property:
        text, n = self.text, self.n
        start = pos = self.pos
        if text[pos] == "-":
            pos += 1
        if pos >= n or text[pos] not in _DIGITS:
            self.fail(pos, "expected a digit")
        if text[pos] == "0":
            pos += 1
            if pos < n and text[pos] in _DIGITS:
                self.fail(pos, "leading zero")
        else:
            while pos < n and text[pos] in _DIGITS:
                pos += 1
        if pos < n and text[pos] == ".":
            pos += 1
            if pos >= n or text[pos] not in _DIGITS:
                self.fail(pos, "expected a digit after the decimal point")
            while pos < n and text[pos] in _DIGITS:
                pos += 1
        if pos < n and text[pos] in "eE":
            pos += 1
            if pos < n and text[pos] in "+-":
                pos += 1
            if pos >= n or text[pos] not in _DIGITS:
                self.fail(pos, "expected exponent digits")
            while pos < n and text[pos] in _DIGITS:
                pos += 1
        self.pos = pos
        return Property(PropertyType.NUMBER, start, pos - start)

    def parse_quoted(self, quote: str) -> Tuple[int, int]:
        """Validates a quoted string starting at pos; returns the content span."""
        text, n = self.text, self.n
        run = _PLAIN_RUN[quote]
        pos = self.pos + 1
        start = pos
        while True:
            pos = run.match(text, pos).end()
            if pos >= n:
                self.fail(pos, "unterminated string")
            c = text[pos]
            if c == quote:
                break
            if c == "\\":
                pos += 1
                if pos >= n:
                    self.fail(pos, "unterminated string")
                e = text[pos]
                if e == "u":
                    for k in range(1, 5):
                        if pos + k >= n or text[pos + k] not in _HEX:
                            self.fail(pos + k, "\\u needs four hex digits")
                    pos += 5
                    continue
                if e in _SIMPLE_ESCAPES or (e == "'" and self.relaxed):
                    pos += 1
                    continue
                self.fail(pos, f"invalid escape \\{e}")
            self.fail(pos, "control character in string")
        self.pos = pos + 1
        return start, pos - start

    def parse_name(self) -> Tuple[int, int, bool]:
        text, n, pos = self.text, self.n, self.pos
        if pos >= n:
            self.fail(pos, "expected a member name")
        c = text[pos]
        if c == '"':
            offset, length = self.parse_quoted('"')
            return offset, length, True
        if self.relaxed:
            if c == "'":
                offset, length = self.parse_quoted("'")
                return offset, length, True
            if c == "\\" and pos + 1 < n and text[pos + 1] in "\"'":
                closer = "\\" + text[pos + 1]
                start = pos + 2
                end = text.find(closer, start)
                if end < 0:
                    self.fail(pos, "unterminated member name")
                for k in range(start, end):
                    if ord(text[k]) < 0x20:
                        self.fail(k, "control character in member name")
                self.pos = end + 2
                return start, end - start, True
            if _is_ident(c):
                start = pos
                while pos < n and _is_ident(text[pos]):
                    pos += 1
                self.pos = pos
                return start, pos - start, False
        self.fail(pos, "expected a member name")

    def parse_container(self, depth: int, ptype: PropertyType, closer: str) -> Property:
        text = self.text
        open_pos = self.pos
        if depth > MAX_NESTING:
            self.fail(open_pos, "nesting too deep")
        node = Property(ptype, open_pos)
        self.pos += 1
        self.skip_ws()
        if self.pos < self.n and text[self.pos] == closer:
            self.pos += 1
            node.length = self.pos - open_pos
            return node
        is_object = ptype is PropertyType.OBJECT
        while True:
            self.skip_ws()
            if is_object:
                name_offset, name_length, escaped = self.parse_name()
                self.skip_ws()
                if self.pos >= self.n or text[self.pos] != ":":
                    self.fail(self.pos, "expected ':'")
                self.pos += 1
                self.skip_ws()
            child = self.parse_value(depth)
            if is_object:
                child.name_offset = name_offset
                child.name_length = name_length
                child.name_escaped = escaped
            node.children.append(child)
            self.skip_ws()
            if self.pos >= self.n:
                self.fail(self.pos, f"expected ',' or '{closer}'")
            c = text[self.pos]
            self.pos += 1
            if c == ",":
                continue
            if c == closer:
                break
            self.fail(self.pos - 1, f"expected ',' or '{closer}'")
        node.length = self.pos - open_pos
        return node


def _is_ident(c: str) -> bool:
    return (c.isascii() and c.isalnum()) or c in "_$"


def parse(text: str, relaxed: bool = False) -> ParseResult:
    """
    Parses text into a Property tree.

    relaxed also accepts bare, single-quoted and backslash-quoted member
    names, and single-quoted string values.
    """
    if not isinstance(text, str):
        return ParseResult(status='error', error_offset=0, error_message="document is not text")
    try:
        root = _Parser(text, relaxed).parse_document()
    except _JsonSyntaxError as e:
        return ParseResult(status='error', error_offset=e.offset, error_message=e.message)
    return ParseResult(status='success', root=root)


# =================================================================
# Paths
# =================================================================

def split_path(path: str) -> Optional[List[Tuple[Optional[str], List[int]]]]:
    """
    Splits 'a.b[1][2].c' into [('a', []), ('b', [1, 2]), ('c', [])].

    A segment may be unnamed ('[0].k') to index a rooted array. Returns None
    for a malformed path.
    """
    if path is None:
        return None
    path = path.strip()
    if path == "":
        return []
    segments = []
    for part in path.split("."):
        m = _SEGMENT_RE.fullmatch(part)
        if not m:
            return None
        name = m.group(1)
        indexes = [int(x) for x in _INDEX_RE.findall(m.group(2))]
        if name == "" and not indexes:
            return None
        segments.append((name if name != "" else None, indexes))
    return segments


class JsonLookup:
    """
    A parsed document plus the queries that run against it.

    The source text is kept for the lifetime of the tree since every node
    refers into it. A failed load discards any previous tree.
    """

    def __init__(self):
        self.text: str = ""
        self.root: Optional[Property] = None
        self.overrides: Dict[str, str] = {}

    @property
    def loaded(self) -> bool:
        return self.root is not None

    def load(self, text: str, relaxed: bool = False) -> ParseResult:
        result = parse(text, relaxed)
        if result.ok:
            self.text = text
            self.root = result.root
        else:
            self.text = ""
            self.root = None
        self.overrides.clear()
        return result

    # --- queries ---
    def _member(self, node: Property, name: str) -> Optional[Property]:
        for child in node.children:
            if child.name(self.text) == name:
                return child
        return None

    def _walk(self, node: Optional[Property], segments) -> Optional[Property]:
        for name, indexes in segments:
            if node is None:
                return None
            if name is not None:
                if node.type is not PropertyType.OBJECT:
                    return None
                node = self._member(node, name)
                if node is None:
                    return None
            for index in indexes:
                if node.type is not PropertyType.ARRAY or index >= len(node.children):
                    return None
                node = node.children[index]
        return node

    def get_property(self, path: str) -> Optional[Property]:
        segments = split_path(path)
        if segments is None or self.root is None:
            return None
        return self._walk(self.root, segments)

    def get(self, path: str) -> Optional[str]:
        """
        Returns the text at path, or None when the path does not resolve.

        Leaves give their un-escaped value; objects and arrays give their
        source text verbatim.
        """
        node = self.get_property(path)
        if node is None:
            return None
        return node.value(self.text)

    def get_type(self, path: str) -> Optional[str]:
        node = self.get_property(path)
        return node.type.value if node is not None else None

    def find_key(self, path: str, start: int = 0, count: Optional[int] = None) -> int:
        """
        Scans the array named before '[]' for the first element, from start and
        for at most count elements, that contains the member path after it.

            find_key("items[].id")   # index of the first item with an 'id'

        Returns -1 when nothing matches.
        """
        if self.root is None or not path or "[]" not in path:
            return -1
        array_path, _, member_path = path.partition("[]")
        member_path = member_path.lstrip(".")
        array_segments = split_path(array_path)
        member_segments = split_path(member_path)
        if array_segments is None or not member_segments:
            return -1
        array = self._walk(self.root, array_segments)
        if array is None or array.type is not PropertyType.ARRAY:
            return -1
        start = max(0, int(start))
        stop = len(array.children) if count is None else min(len(array.children), start + max(0, int(count)))
        for index in range(start, stop):
            if self._walk(array.children[index], member_segments) is not None:
                return index
        return -1

    # --- serialization ---
    def override(self, path: str, literal: str):
        """Substitutes literal for the scalar at path when dumping."""
        self.overrides[path] = literal

    def clear_overrides(self):
        self.overrides.clear()

    def dump(self) -> str:
        """Rebuilds a normalized, compact JSON string from the tree."""
        if self.root is None:
            return ""
        out: List[str] = []
        self._dump(self.root, "", out)
        return "".join(out)

    def _dump(self, node: Property, path: str, out: List[str]):
        text = self.text
        if node.type is PropertyType.OBJECT:
            out.append("{")
            for k, child in enumerate(node.children):
                if k:
                    out.append(",")
                name = child.name(text)
                out.append(_quote(name))
                out.append(":")
                self._dump(child, f"{path}.{name}" if path else name, out)
            out.append("}")
            return
        if node.type is PropertyType.ARRAY:
            out.append("[")
            for k, child in enumerate(node.children):
                if k:
                    out.append(",")
                self._dump(child, f"{path}[{k}]", out)
            out.append("]")
            return
        literal = self.overrides.get(path)
        if literal is not None:
            out.append(literal)
        elif node.type is PropertyType.STRING:
            out.append(_quote(node.value(text)))
        else:
            out.append(node.raw(text))

    def to_xml(self, root_tag: Optional[str] = None) -> str:
        """
        Projects the tree to one XML element per node.

        Members are tagged '<code>_<name>' where code is the node type's
        letter (o, a, s, n, b, u); array elements are named 'item'.
        """
        if self.root is None:
            return ""
        out: List[str] = []
        tag = root_tag if root_tag else _xml_tag(self.root.type, "root")
        self._xml(self.root, tag, out)
        return "".join(out)

    def _xml(self, node: Property, tag: str, out: List[str]):
        if node.is_container:
            out.append(f"<{tag}>")
            is_object = node.type is PropertyType.OBJECT
            for child in node.children:
                name = child.name(self.text) if is_object else "item"
                self._xml(child, _xml_tag(child.type, name), out)
            out.append(f"</{tag}>")
        elif node.type is PropertyType.NULL:
            out.append(f"<{tag}/>")
        else:
            out.append(f"<{tag}>{_xml_text(node.value(self.text))}</{tag}>")


def _xml_tag(ptype: PropertyType, name: Optional[str]) -> str:
    return _XML_CODES[ptype] + "_" + _XML_NAME_BAD.sub("_", name or "")


def _xml_text(value: str) -> str:
    return _xml_escape(_XML_TEXT_BAD.sub("\ufffd", value))


__all__ = [
    "MAX_NESTING",
    "PropertyType",
    "Property",
    "ParseResult",
    "parse",
    "split_path",
    "JsonLookup",
]
