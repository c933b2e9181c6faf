from __future__ import annotations

import codecs
from typing import Optional

import structlog

from imapreader.errors import EncodingError

logger = structlog.get_logger()

# Labels seen in real mail that Python's codec registry does not know.
_ALIASES = {
    "default": "iso-8859-1",
    "ks_c_5601-1987": "cp949",
    "x-gbk": "gbk",
    "x-sjis": "shift_jis",
    "unicode-1-1-utf-7": "utf-7",
    "x-user-defined": "windows-1252",
}


def codec_name(charset: Optional[str]) -> Optional[str]:
    """
    Canonical Python codec name for a MIME charset label, or None if unknown.
    """
    if not charset:
        return None
    label = charset.strip().strip('"').lower()
    label = _ALIASES.get(label, label)
    try:
        return codecs.lookup(label).name
    except LookupError:
        return None


class EncodingConverter:
    """
    Re-encode byte content into a fixed target charset.

    Conversion is best effort: unmappable sequences are dropped and any
    failure hands back the input bytes untouched.
    """

    def __init__(self, target: str = "UTF-8") -> None:
        target_codec = codec_name(target)
        if target_codec is None:
            raise LookupError(f"unknown target encoding: {target!r}")
        self.target = target
        self.target_codec = target_codec

    def convert(self, data: bytes, source: Optional[str]) -> bytes:
        if not data:
            return data
        if source and source.strip().lower() == self.target.lower():
            return data
        try:
            return self._transcode(data, source)
        except EncodingError as e:
            logger.debug("charset_conversion_skipped", source=source, target=self.target, error=str(e))
            return data

    def to_text(self, data: bytes, source: Optional[str]) -> str:
        """Convert, then decode from the target charset."""
        return self.convert(data, source).decode(self.target_codec, errors="replace")

    def _transcode(self, data: bytes, source: Optional[str]) -> bytes:
        source_codec = codec_name(source)
        if source_codec is None:
            raise EncodingError(f"unsupported charset {source!r}")
        if source_codec == self.target_codec:
            return data
        try:
            return data.decode(source_codec, errors="ignore").encode(self.target_codec, errors="ignore")
        except (UnicodeError, LookupError, ValueError) as e:
            raise EncodingError(str(e)) from e
