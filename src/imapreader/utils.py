from __future__ import annotations

import mimetypes
import re
from datetime import date
from typing import Optional

# English abbreviations regardless of locale; IMAP dates require them.
MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

_UNSAFE_FILENAME_RE = re.compile(r"[\x00-\x1f\x7f]+")


def imap_date(d: date) -> str:
    """Format as DD-Mon-YYYY, the IMAP SEARCH date form."""
    return f"{d.day:02d}-{MONTHS[d.month - 1]}-{d.year:04d}"


def safe_filename(name: str, fallback: str = "attachment") -> str:
    if not name:
        return fallback
    name = name.strip().replace("\\", "_").replace("/", "_")
    name = _UNSAFE_FILENAME_RE.sub("", name)
    if name in (".", ".."):
        return fallback
    return name or fallback


def guess_extension(content_type: Optional[str]) -> str:
    if not content_type:
        return ".bin"
    return mimetypes.guess_extension(content_type.lower(), strict=False) or ".bin"
