from __future__ import annotations

import re
from dataclasses import dataclass, field
from email.message import Message
from email.parser import HeaderParser
from email.policy import compat32
from email.utils import parsedate_to_datetime
from typing import Callable, Dict, List, Optional

import structlog

from imapreader.charset import EncodingConverter
from imapreader.config import ReaderConfig
from imapreader.decoder import MimePartDecoder, new_attachment_id
from imapreader.errors import IMAPConnectionError, ParseError, ReaderError
from imapreader.headers import HeaderDecoder
from imapreader.imap.pagination import Page, Pagination
from imapreader.imap.query import SearchCriteria
from imapreader.imap.session import MailSession
from imapreader.models import DecodedMessage, MessageFlags
from imapreader.storage import ByteSink
from imapreader.types import MessageRef

logger = structlog.get_logger()

_FOLD_RE = re.compile(r"\r?\n[ \t]+")


@dataclass(frozen=True)
class FetchRequest:
    """
    Everything one retrieval needs: which messages, in what order, from
    which mailbox. When uid is set, criteria and pagination are ignored.
    """

    criteria: SearchCriteria = field(default_factory=SearchCriteria)
    pagination: Pagination = field(default_factory=Pagination)
    mailbox: Optional[str] = None
    uid: Optional[int] = None


@dataclass
class FetchResult:
    messages: List[DecodedMessage] = field(default_factory=list)
    page: Optional[Page] = None
    # sequence number (or uid for single fetches) -> error text
    failures: Dict[int, str] = field(default_factory=dict)


def parse_header_block(header_bytes: bytes) -> Message:
    """
    Parse a raw header block without decoding encoded words; that is left
    to HeaderDecoder.
    """
    if not header_bytes or not header_bytes.strip():
        raise ParseError("Empty header block")
    text = header_bytes.decode("utf-8", errors="replace")
    msg = HeaderParser(policy=compat32).parsestr(text, headersonly=True)
    if not msg.keys():
        raise ParseError("Header block has no fields")
    return msg


def custom_header_lines(msg: Message) -> List[str]:
    out: List[str] = []
    for name, value in msg.items():
        if name.upper().startswith("X-"):
            out.append(f"{name}: {_FOLD_RE.sub(' ', str(value)).strip()}")
    return out


def _header(msg: Message, name: str) -> Optional[str]:
    values = msg.get_all(name)
    if not values:
        return None
    return ", ".join(str(v) for v in values)


def _sent_at(raw: Optional[str]):
    if not raw:
        return None
    try:
        return parsedate_to_datetime(raw)
    except (TypeError, ValueError, IndexError, OverflowError):
        return None


class MessageFetchPipeline:
    """
    Search, order, page, then fetch and decode each message.

    One pipeline works against one session; nothing is kept between runs.
    A message that fails to fetch or decode is recorded in
    FetchResult.failures and the rest of the batch carries on. Losing the
    connection aborts the batch.
    """

    def __init__(
        self,
        session: MailSession,
        config: Optional[ReaderConfig] = None,
        *,
        sink: Optional[ByteSink] = None,
        id_factory: Callable[[], str] = new_attachment_id,
    ) -> None:
        self.session = session
        self.config = config or ReaderConfig()
        self.converter = EncodingConverter(self.config.encoding)
        self.headers = HeaderDecoder(self.converter)
        self.sink = sink
        self.id_factory = id_factory

    @property
    def peek(self) -> bool:
        return not self.config.mark_as_read

    def _decoder(self) -> MimePartDecoder:
        return MimePartDecoder(
            self.session,
            converter=self.converter,
            header_decoder=self.headers,
            attachment_dir=self.config.attachment_dir,
            sink=self.sink,
            peek=self.peek,
            max_depth=self.config.max_depth,
            id_factory=self.id_factory,
        )

    def resolve(self, request: FetchRequest) -> Page:
        criteria = request.criteria.build()
        ids = self.session.search(criteria, self.config.search_charset)
        page = request.pagination.apply(ids)
        logger.info(
            "messages_resolved",
            mailbox=self.session.mailbox,
            criteria=criteria,
            total=page.total,
            selected=len(page.ids),
        )
        return page

    def run(self, request: FetchRequest) -> FetchResult:
        if request.mailbox:
            self.session.select(request.mailbox)

        if request.uid is not None:
            return self._run_single(request.uid)

        result = FetchResult(page=self.resolve(request))
        for seq in result.page.ids:
            try:
                uid = self.session.sequence_to_uid(seq)
                if uid is None:
                    result.failures[seq] = f"no UID for sequence number {seq}"
                    continue
                message = self.fetch_message(uid, sequence=seq)
                if message is None:
                    continue
                if self.config.mark_as_read:
                    self.session.mark_seen(uid)
            except IMAPConnectionError:
                raise
            except ReaderError as e:
                logger.warning("message_fetch_failed", sequence=seq, error=str(e))
                result.failures[seq] = str(e)
                continue
            result.messages.append(message)
        return result

    def _run_single(self, uid: int) -> FetchResult:
        result = FetchResult()
        try:
            message = self.fetch_message(uid)
        except IMAPConnectionError:
            raise
        except ReaderError as e:
            logger.warning("message_fetch_failed", uid=uid, error=str(e))
            result.failures[uid] = str(e)
            return result
        if message is not None:
            result.messages.append(message)
        return result

    def fetch_message(self, uid: int, *, sequence: Optional[int] = None) -> Optional[DecodedMessage]:
        """
        Fetch and decode one message by UID.

        Returns None when the header block cannot be parsed. The partially
        built message is only returned once every step has completed.
        """
        header_bytes = self.session.fetch_header(uid)
        try:
            header = parse_header_block(header_bytes)
        except ParseError as e:
            logger.warning("message_header_unparseable", uid=uid, error=str(e))
            return None

        message = DecodedMessage(ref=MessageRef(uid=uid, mailbox=self.session.mailbox, sequence=sequence))
        self._apply_envelope(message, header)

        structure = self.session.fetch_body_structure(uid)
        self._decoder().decode_message(message, structure)

        message.raw_body = self.session.fetch_raw(uid, peek=self.peek)

        info = self.session.fetch_flags(uid)
        message.flags = MessageFlags.from_imap(info.flags)
        message.size = info.size
        if sequence is None and info.sequence is not None:
            message.ref = MessageRef(uid=uid, mailbox=message.ref.mailbox, sequence=info.sequence)

        message.custom_headers = custom_header_lines(header)
        logger.debug(
            "message_decoded",
            uid=uid,
            attachments=len(message.attachments),
            has_plain=message.plain is not None,
            has_html=message.html is not None,
        )
        return message

    def _apply_envelope(self, message: DecodedMessage, header: Message) -> None:
        message.subject = self.headers.decode(_header(header, "Subject"))
        message.date = _header(header, "Date")
        message.sent_at = _sent_at(message.date)
        message.from_address = self.headers.parse_address(_header(header, "From"))
        message.to = self.headers.parse_addresses(_header(header, "To"))
        message.cc = self.headers.parse_addresses(_header(header, "Cc"))
        message.reply_to = self.headers.parse_addresses(_header(header, "Reply-To"))
