from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union
from urllib.parse import unquote_to_bytes

from imapreader.charset import codec_name
from imapreader.errors import ParseError

BODYSTRUCTURE_RE = re.compile(rb"BODYSTRUCTURE\s+\(", re.IGNORECASE)

# Nesting deeper than this in the wire format is rejected outright.
MAX_WIRE_DEPTH = 100

TEXT = "TEXT"
MULTIPART = "MULTIPART"
MESSAGE = "MESSAGE"
PLAIN = "PLAIN"
RFC822 = "RFC822"

SEVEN_BIT = "7bit"
EIGHT_BIT = "8bit"
BINARY = "binary"
BASE64 = "base64"
QUOTED_PRINTABLE = "quoted-printable"


@dataclass(frozen=True)
class BodyPart:
    """
    One node of a message's MIME structure, as reported by the server.

    params holds lower-cased parameter names from both the body parameters
    and the disposition parameters; disposition values win on conflicts.
    """

    type: str
    subtype: str
    encoding: str = SEVEN_BIT
    disposition: Optional[str] = None
    params: Dict[str, str] = field(default_factory=dict)
    content_id: Optional[str] = None
    description: Optional[str] = None
    size: int = 0
    parts: Tuple["BodyPart", ...] = ()

    @property
    def is_composite(self) -> bool:
        return bool(self.parts)

    @property
    def content_type(self) -> str:
        return f"{self.type}/{self.subtype}".lower()

    @property
    def is_embedded_message(self) -> bool:
        return self.type == MESSAGE and self.subtype == RFC822

    @property
    def charset(self) -> Optional[str]:
        return self.params.get("charset") or None


# -----------------------
# Wire parsing
# -----------------------

Node = Union[None, bytes, List[Any]]


class _Cursor:
    def __init__(self, data: bytes) -> None:
        self.data = data
        self.pos = 0

    def peek(self) -> int:
        return self.data[self.pos] if self.pos < len(self.data) else -1

    def skip_space(self) -> None:
        while self.pos < len(self.data) and self.data[self.pos] in b" \t\r\n":
            self.pos += 1


def _read_quoted(cur: _Cursor) -> bytes:
    cur.pos += 1  # opening quote
    buf = bytearray()
    data = cur.data
    while cur.pos < len(data):
        c = data[cur.pos]
        if c == 0x5C and cur.pos + 1 < len(data):  # backslash escape
            buf.append(data[cur.pos + 1])
            cur.pos += 2
            continue
        if c == 0x22:
            cur.pos += 1
            return bytes(buf)
        buf.append(c)
        cur.pos += 1
    raise ParseError("Unterminated quoted string in BODYSTRUCTURE")


def _read_literal(cur: _Cursor) -> bytes:
    end = cur.data.find(b"}", cur.pos)
    if end == -1:
        raise ParseError("Unterminated literal in BODYSTRUCTURE")
    try:
        size = int(cur.data[cur.pos + 1 : end])
    except ValueError as e:
        raise ParseError("Bad literal size in BODYSTRUCTURE") from e
    start = end + 1
    if cur.data[start : start + 2] == b"\r\n":
        start += 2
    elif cur.data[start : start + 1] == b"\n":
        start += 1
    cur.pos = start + size
    return cur.data[start : start + size]


def _read_atom(cur: _Cursor) -> Optional[bytes]:
    start = cur.pos
    data = cur.data
    while cur.pos < len(data) and data[cur.pos] not in b" \t\r\n()":
        cur.pos += 1
    atom = data[start : cur.pos]
    if atom.upper() == b"NIL":
        return None
    return atom


def _read_node(cur: _Cursor, depth: int) -> Node:
    cur.skip_space()
    c = cur.peek()
    if c == -1:
        raise ParseError("Unexpected end of BODYSTRUCTURE")
    if c == 0x28:  # (
        if depth >= MAX_WIRE_DEPTH:
            raise ParseError("BODYSTRUCTURE nested too deeply")
        cur.pos += 1
        out: List[Any] = []
        while True:
            cur.skip_space()
            c = cur.peek()
            if c == -1:
                raise ParseError("Unbalanced parentheses in BODYSTRUCTURE")
            if c == 0x29:  # )
                cur.pos += 1
                return out
            out.append(_read_node(cur, depth + 1))
    if c == 0x29:
        raise ParseError("Unbalanced parentheses in BODYSTRUCTURE")
    if c == 0x22:
        return _read_quoted(cur)
    if c == 0x7B:  # {
        return _read_literal(cur)
    return _read_atom(cur)


def parse_bodystructure(raw: Union[bytes, str]) -> Node:
    """
    Parse the parenthesised BODYSTRUCTURE value into nested lists.

    Strings come back as bytes, NIL as None.
    """
    data = raw.encode("utf-8") if isinstance(raw, str) else bytes(raw)
    cur = _Cursor(data)
    node = _read_node(cur, 0)
    if not isinstance(node, list):
        raise ParseError("BODYSTRUCTURE is not a parenthesised list")
    return node


def extract_bodystructure(fetch_line: bytes) -> Optional[bytes]:
    """
    Cut the BODYSTRUCTURE (...) value out of a flattened FETCH response line.
    """
    m = BODYSTRUCTURE_RE.search(fetch_line)
    if not m:
        return None
    start = m.end() - 1
    cur = _Cursor(fetch_line)
    cur.pos = start
    _read_node(cur, 0)
    return fetch_line[start : cur.pos]


# -----------------------
# Conversion to BodyPart
# -----------------------

def _text(x: Any) -> str:
    if x is None:
        return ""
    if isinstance(x, bytes):
        return x.decode("utf-8", errors="replace")
    if isinstance(x, list):
        return ""
    return str(x)


def _int(x: Any) -> int:
    try:
        return int(_text(x))
    except ValueError:
        return 0


def _param_pairs(x: Any) -> Dict[str, str]:
    if not isinstance(x, list):
        return {}
    out: Dict[str, str] = {}
    i = 0
    while i + 1 < len(x):
        out[_text(x[i]).lower()] = _text(x[i + 1])
        i += 2
    return out


def _collapse_rfc2231(params: Dict[str, str]) -> Dict[str, str]:
    """
    Join RFC 2231 continuations (name*0*, name*1*) and decode their
    charset'lang'%XX values.
    """
    plain: Dict[str, str] = {}
    sections: Dict[str, List[Tuple[int, bool, str]]] = {}
    for key, value in params.items():
        if "*" not in key:
            plain[key] = value
            continue
        base, _, rest = key.partition("*")
        encoded = rest == "" or rest.endswith("*")
        num = rest.rstrip("*")
        idx = int(num) if num.isdigit() else 0
        sections.setdefault(base, []).append((idx, encoded, value))

    for base, items in sections.items():
        items.sort(key=lambda t: t[0])
        charset: Optional[str] = None
        chunks: List[bytes] = []
        for n, (_, encoded, value) in enumerate(items):
            if encoded:
                if n == 0 and value.count("'") >= 2:
                    charset, _lang, value = value.split("'", 2)
                chunks.append(unquote_to_bytes(value))
            else:
                chunks.append(value.encode("utf-8"))
        codec = codec_name(charset) or "utf-8"
        plain[base] = b"".join(chunks).decode(codec, errors="replace")
    return plain


def _disposition(x: Any) -> Tuple[Optional[str], Dict[str, str]]:
    if not isinstance(x, list) or not x or isinstance(x[0], list):
        return None, {}
    kind = _text(x[0]).strip().lower() or None
    params = _param_pairs(x[1]) if len(x) > 1 else {}
    return kind, params


def _find_disposition(ext: List[Any]) -> Tuple[Optional[str], Dict[str, str]]:
    # Positional slot first, then a structural scan for servers that
    # shift the extension fields.
    if len(ext) > 1:
        kind, params = _disposition(ext[1])
        if kind:
            return kind, params
    for el in ext:
        kind, params = _disposition(el)
        if kind in ("inline", "attachment"):
            return kind, params
    return None, {}


def _merge_params(body: Dict[str, str], dispo: Dict[str, str]) -> Dict[str, str]:
    merged = dict(body)
    merged.update(dispo)
    return _collapse_rfc2231(merged)


def to_body_part(node: Any) -> BodyPart:
    """
    Convert a parsed BODYSTRUCTURE list into a BodyPart tree.
    """
    if not isinstance(node, list) or not node:
        raise ParseError(f"Malformed body structure node: {node!r}")

    if isinstance(node[0], list):
        children: List[BodyPart] = []
        i = 0
        while i < len(node) and isinstance(node[i], list):
            children.append(to_body_part(node[i]))
            i += 1
        subtype = _text(node[i]).upper() if i < len(node) else "MIXED"
        ext = node[i + 1 :]
        body_params = _param_pairs(ext[0]) if ext else {}
        kind, dispo_params = _disposition(ext[1]) if len(ext) > 1 else (None, {})
        return BodyPart(
            type=MULTIPART,
            subtype=subtype or "MIXED",
            disposition=kind,
            params=_merge_params(body_params, dispo_params),
            parts=tuple(children),
        )

    if len(node) < 7:
        raise ParseError(f"Body structure leaf has {len(node)} fields, expected at least 7")

    type_ = _text(node[0]).upper() or TEXT
    subtype = _text(node[1]).upper() or PLAIN
    body_params = _param_pairs(node[2])
    cid = _text(node[3]).strip().strip("<>").strip() or None
    description = _text(node[4]) or None
    encoding = _text(node[5]).strip().lower() or SEVEN_BIT
    size = _int(node[6])

    rest = list(node[7:])
    parts: Tuple[BodyPart, ...] = ()
    if type_ == TEXT:
        rest = rest[1:]  # line count
    elif type_ == MESSAGE and subtype == RFC822 and len(rest) >= 2 and isinstance(rest[1], list):
        parts = (to_body_part(rest[1]),)
        rest = rest[3:]  # envelope, body, line count

    kind, dispo_params = _find_disposition(rest)
    return BodyPart(
        type=type_,
        subtype=subtype,
        encoding=encoding,
        disposition=kind,
        params=_merge_params(body_params, dispo_params),
        content_id=cid,
        description=description,
        size=size,
        parts=parts,
    )


def body_part_from_wire(raw: Union[bytes, str]) -> BodyPart:
    return to_body_part(parse_bodystructure(raw))
