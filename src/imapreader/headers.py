from __future__ import annotations

from email.errors import HeaderParseError
from email.header import decode_header
from email.utils import getaddresses
from typing import List, Optional

from imapreader.charset import EncodingConverter
from imapreader.models import Address

# Charset assumed for raw 8-bit octets outside encoded words.
DEFAULT_CHARSET = "iso-8859-1"


class HeaderDecoder:
    def __init__(self, converter: Optional[EncodingConverter] = None) -> None:
        self.converter = converter or EncodingConverter()

    def decode(self, value: Optional[str]) -> str:
        """
        Decode RFC 2047 encoded words into a plain string.

        Adjacent encoded words are joined without the whitespace between
        them. Never raises: undecodable input comes back as given.
        """
        if not value:
            return ""
        try:
            segments = decode_header(value)
        except (HeaderParseError, ValueError, LookupError):
            return value

        out = bytearray()
        for chunk, charset in segments:
            if charset:
                out += self.converter.convert(chunk, charset)
            else:
                out += self._unencoded(chunk)
        return bytes(out).decode(self.converter.target_codec, errors="replace")

    def _unencoded(self, chunk) -> bytes:
        """
        Target-encoded bytes for text that sat outside any encoded word.

        decode_header hands this back as str when the value had no encoded
        words, and as raw-unicode-escape bytes otherwise. Only raw 8-bit
        octets (smuggled through as surrogates) are read as iso-8859-1.
        """
        text = chunk if isinstance(chunk, str) else chunk.decode("raw-unicode-escape")
        try:
            raw = text.encode("ascii", errors="surrogateescape")
        except UnicodeEncodeError:
            return text.encode(self.converter.target_codec, errors="replace")
        return self.converter.convert(raw, DEFAULT_CHARSET)

    def parse_addresses(self, *values: Optional[str]) -> List[Address]:
        """
        Parse one or more address headers, decoding display names.
        """
        raw = [v for v in values if v]
        if not raw:
            return []

        out: List[Address] = []
        for name, addr in getaddresses(raw):
            addr = (addr or "").strip()
            name = self.decode(name).strip()
            if not addr and not name:
                continue
            mailbox, sep, host = addr.rpartition("@")
            if not sep:
                mailbox, host = addr, ""
            out.append(Address(mailbox=mailbox, host=host, name=name or None))
        return out

    def parse_address(self, value: Optional[str]) -> Optional[Address]:
        addrs = self.parse_addresses(value)
        return addrs[0] if addrs else None
