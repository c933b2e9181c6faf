from __future__ import annotations

import base64
import binascii
import os
import quopri
import uuid
from typing import Callable, Optional

import structlog

from imapreader.charset import EncodingConverter
from imapreader.errors import AttachmentWriteError
from imapreader.headers import HeaderDecoder
from imapreader.imap.bodystructure import (
    BASE64,
    MESSAGE,
    MULTIPART,
    PLAIN,
    QUOTED_PRINTABLE,
    TEXT,
    BodyPart,
)
from imapreader.models import ATTACHMENT, INLINE, Attachment, DecodedMessage
from imapreader.storage import ByteSink, FileSystemSink
from imapreader.utils import guess_extension, safe_filename

logger = structlog.get_logger()

DEFAULT_MAX_DEPTH = 32


def decode_transfer(payload: bytes, encoding: Optional[str]) -> bytes:
    """
    Undo a Content-Transfer-Encoding. 7bit, 8bit, binary and unknown
    encodings pass through unchanged.
    """
    if not encoding:
        return payload
    cte = encoding.strip().lower()

    if cte == BASE64:
        try:
            return base64.b64decode(payload, validate=False)
        except (binascii.Error, ValueError):
            return payload
    if cte in (QUOTED_PRINTABLE, "quotedprintable"):
        return quopri.decodestring(payload)
    return payload


def new_attachment_id() -> str:
    return uuid.uuid4().hex


class MimePartDecoder:
    """
    Walk a BodyPart tree depth-first, fetching each part and filling in the
    plain/html bodies and attachments of a DecodedMessage.

    Part numbers follow IMAP: children of the root are "1", "2", ...; a child
    of "2" is "2.1"; the body of an embedded MESSAGE/RFC822 keeps its
    parent's number.
    """

    def __init__(
        self,
        session,
        *,
        converter: Optional[EncodingConverter] = None,
        header_decoder: Optional[HeaderDecoder] = None,
        attachment_dir: Optional[str] = None,
        sink: Optional[ByteSink] = None,
        peek: bool = True,
        max_depth: int = DEFAULT_MAX_DEPTH,
        id_factory: Callable[[], str] = new_attachment_id,
    ) -> None:
        self.session = session
        self.converter = converter or EncodingConverter()
        self.header_decoder = header_decoder or HeaderDecoder(self.converter)
        self.attachment_dir = attachment_dir
        self.sink = sink or FileSystemSink()
        self.peek = peek
        self.max_depth = max_depth
        self.id_factory = id_factory

    def decode_message(self, message: DecodedMessage, structure: BodyPart) -> None:
        if structure.parts:
            for i, child in enumerate(structure.parts):
                self.decode(message, child, str(i + 1), depth=1)
        else:
            self.decode(message, structure, None)

    def decode(
        self,
        message: DecodedMessage,
        part: BodyPart,
        path: Optional[str],
        depth: int = 0,
    ) -> bytes:
        if depth > self.max_depth:
            logger.warning("mime_depth_exceeded", uid=message.uid, part=path, max_depth=self.max_depth)
            message.warnings.append(f"part {path}: structure deeper than {self.max_depth} levels skipped")
            return b""

        data = b""
        if part.type != MULTIPART:
            raw = self.session.fetch_body_part(message.uid, path, peek=self.peek)
            data = decode_transfer(raw or b"", part.encoding)

        if self.is_attachment(part):
            self._attach(message, part, path, data)
        else:
            if part.charset:
                data = self.converter.convert(data, part.charset)
            if part.type == TEXT:
                text = data.decode(self.converter.target_codec, errors="replace")
                if part.subtype == PLAIN:
                    message.plain = text
                else:
                    message.html = text
            elif part.type == MESSAGE:
                message.plain = data.decode(self.converter.target_codec, errors="replace")

        for i, child in enumerate(part.parts):
            if part.is_embedded_message:
                child_path = path
            elif path:
                child_path = f"{path}.{i + 1}"
            else:
                child_path = str(i + 1)
            self.decode(message, child, child_path, depth + 1)

        return data.strip()

    @staticmethod
    def is_attachment(part: BodyPart) -> bool:
        # Inline plain text is body text, not an attachment.
        if part.type == MULTIPART:
            return False
        return part.disposition in (INLINE, ATTACHMENT) and part.subtype != PLAIN

    def attachment_id(self, part: BodyPart) -> str:
        if part.disposition == INLINE and part.content_id:
            return part.content_id
        return self.id_factory()

    def display_name(self, part: BodyPart) -> Optional[str]:
        raw = part.params.get("filename") or part.params.get("name")
        if not raw:
            return None
        return safe_filename(self.header_decoder.decode(raw))

    def _attach(self, message: DecodedMessage, part: BodyPart, path: Optional[str], data: bytes) -> None:
        att_id = self.attachment_id(part)
        display = self.display_name(part)
        if display is None:
            display = "attachment" + guess_extension(part.content_type)
            logger.debug("attachment_without_name", uid=message.uid, part=path, generated=display)

        name = f"{safe_filename(att_id)}-{display}"
        fields = dict(
            id=att_id,
            name=name,
            kind=part.disposition,
            part=path,
            content_type=part.content_type,
        )

        if not self.attachment_dir:
            message.attachments.append(Attachment(data=data, **fields))
            return

        file_path = os.path.join(self.attachment_dir, name)
        try:
            self._persist(file_path, data)
        except AttachmentWriteError as e:
            logger.warning("attachment_write_failed", uid=message.uid, part=path, path=file_path, error=str(e))
            message.warnings.append(str(e))
            message.attachments.append(Attachment(data=data, **fields))
            return
        message.attachments.append(Attachment(file_path=file_path, **fields))

    def _persist(self, file_path: str, data: bytes) -> None:
        try:
            if self.sink.exists(file_path):
                return
            self.sink.write(file_path, data)
        except AttachmentWriteError:
            raise
        except OSError as e:
            raise AttachmentWriteError(file_path, e) from e
