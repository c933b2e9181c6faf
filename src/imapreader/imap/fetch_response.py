from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Sequence, Set

UID_RE = re.compile(r"UID\s+(\d+)", re.IGNORECASE)
SEQ_RE = re.compile(r"^\s*(\d+)\s+\(", re.IGNORECASE)
INTERNALDATE_RE = re.compile(r'INTERNALDATE\s+"([^"]+)"', re.IGNORECASE)
FLAGS_RE = re.compile(r"FLAGS\s*\(([^)]*)\)", re.IGNORECASE)
SIZE_RE = re.compile(r"RFC822\.SIZE\s+(\d+)", re.IGNORECASE)

_BYTES = (bytes, bytearray)


@dataclass(frozen=True)
class FetchPiece:
    """
    One message's worth of a FETCH response.

    meta is the text of the response line up to the first literal; payload
    is that literal (a body section), or None when the line had no literal.
    """

    meta: str
    payload: Optional[bytes] = None


@dataclass(frozen=True)
class FetchInfo:
    uid: int
    sequence: Optional[int] = None
    flags: Set[str] = field(default_factory=set)
    size: int = 0
    internaldate: Optional[str] = None


def iter_fetch_pieces(data: Sequence[object]) -> Iterator[FetchPiece]:
    """
    Walk the list imaplib returns for FETCH.

    imaplib hands back (line, literal) tuples for lines carrying a literal and
    plain bytes for everything else, including the b")" that closes a tuple.
    """
    for item in data:
        if isinstance(item, tuple) and item and isinstance(item[0], _BYTES):
            literal = item[1] if len(item) > 1 and isinstance(item[1], _BYTES) else None
            yield FetchPiece(
                meta=bytes(item[0]).decode(errors="ignore"),
                payload=bytes(literal) if literal is not None else None,
            )
        elif isinstance(item, _BYTES) and bytes(item).strip() not in (b"", b")"):
            yield FetchPiece(meta=bytes(item).decode(errors="ignore"))


def first_payload(data: Sequence[object]) -> Optional[bytes]:
    return next((p.payload for p in iter_fetch_pieces(data) if p.payload is not None), None)


def flatten_fetch(data: Sequence[object]) -> bytes:
    """
    Re-assemble a FETCH response into one byte string, keeping literals in
    their {n}CRLF form so they can be parsed again.
    """
    chunks: List[bytes] = []
    for item in data:
        if isinstance(item, tuple) and item:
            chunks.append(bytes(item[0]))
            if len(item) > 1 and isinstance(item[1], _BYTES):
                chunks += [b"\r\n", bytes(item[1])]
        elif isinstance(item, _BYTES):
            chunks.append(bytes(item))
    return b"".join(chunks)


def _group(regex: re.Pattern, meta: str) -> Optional[str]:
    m = regex.search(meta)
    return m.group(1) if m else None


def parse_uid(meta: str) -> Optional[int]:
    uid = _group(UID_RE, meta)
    return int(uid) if uid else None


def parse_sequence(meta: str) -> Optional[int]:
    seq = _group(SEQ_RE, meta)
    return int(seq) if seq else None


def parse_internaldate(meta: str) -> Optional[str]:
    return _group(INTERNALDATE_RE, meta)


def parse_flags(meta: str) -> Set[str]:
    return set((_group(FLAGS_RE, meta) or "").split())


def parse_size(meta: str) -> int:
    size = _group(SIZE_RE, meta)
    return int(size) if size else 0


def parse_fetch_info(meta: str, uid: int) -> FetchInfo:
    return FetchInfo(
        uid=uid,
        sequence=parse_sequence(meta),
        flags=parse_flags(meta),
        size=parse_size(meta),
        internaldate=parse_internaldate(meta),
    )
