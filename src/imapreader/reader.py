from __future__ import annotations

from typing import Callable, Dict, List, Optional

from imapreader.config import IMAPConfig, ReaderConfig
from imapreader.decoder import new_attachment_id
from imapreader.fetch import FetchRequest, FetchResult, MessageFetchPipeline
from imapreader.imap.pagination import ASC, DESC, Pagination
from imapreader.imap.query import DateLike, SearchCriteria
from imapreader.imap.session import IMAPSession, MailSession
from imapreader.log import configure_logging
from imapreader.models import DecodedMessage
from imapreader.storage import ByteSink


class MailReader:
    """
    Fluent front end: collect filters, ordering and paging, then get().

    Filters only hit the server when get() (or get_email*) is called. Each
    call to get() builds a fresh FetchRequest from the current settings.

    Example:
        with MailReader(IMAPSession(cfg)) as reader:
            emails = reader.unseen().from_("alerts@example.com").limit(10).page(2).get()
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
        self._pipeline = MessageFetchPipeline(session, self.config, sink=sink, id_factory=id_factory)
        self._q = SearchCriteria()
        self._mailbox: Optional[str] = None
        self._id: Optional[int] = None
        self._order = DESC
        self._limit: Optional[int] = None
        self._page: Optional[int] = None
        self.last_result: Optional[FetchResult] = None

    @classmethod
    def from_env(cls) -> "MailReader":
        """Build a reader and its IMAP session from IMAPREADER_* settings."""
        config = ReaderConfig.from_env()
        configure_logging(config.log_level)
        return cls(IMAPSession.from_config(IMAPConfig.from_env()), config)

    @property
    def query(self) -> SearchCriteria:
        """
        The underlying SearchCriteria. This is a LIVE object: mutating it
        affects this reader.
        """
        return self._q

    @query.setter
    def query(self, value: SearchCriteria) -> None:
        if not isinstance(value, SearchCriteria):
            raise TypeError("query must be a SearchCriteria")
        self._q = value

    # -----------------------
    # Selection
    # -----------------------

    def id(self, uid: int) -> MailReader:
        self._id = int(uid)
        return self

    def mailbox(self, mailbox: str) -> MailReader:
        self._mailbox = mailbox
        return self

    def folder(self, folder: str) -> MailReader:
        return self.mailbox(folder)

    def limit(self, n: int) -> MailReader:
        self._limit = n
        return self

    def page(self, n: int) -> MailReader:
        self._page = n
        return self

    def order_asc(self) -> MailReader:
        self._order = ASC
        return self

    def order_desc(self) -> MailReader:
        self._order = DESC
        return self

    # -----------------------
    # Filters
    # -----------------------

    def all(self) -> MailReader:
        self._q.all()
        return self

    def flagged(self) -> MailReader:
        self._q.flagged()
        return self

    def unflagged(self) -> MailReader:
        self._q.unflagged()
        return self

    def unanswered(self) -> MailReader:
        self._q.unanswered()
        return self

    def deleted(self) -> MailReader:
        self._q.deleted()
        return self

    def unseen(self) -> MailReader:
        self._q.unseen()
        return self

    def unread(self) -> MailReader:
        return self.unseen()

    def seen(self) -> MailReader:
        self._q.seen()
        return self

    def read(self) -> MailReader:
        return self.seen()

    def recent(self) -> MailReader:
        self._q.recent()
        return self

    def new_messages(self) -> MailReader:
        self._q.new()
        return self

    def old_messages(self) -> MailReader:
        self._q.old()
        return self

    def from_(self, sender: str) -> MailReader:
        self._q.from_(sender)
        return self

    def sent_to(self, to: str) -> MailReader:
        self._q.to(to)
        return self

    def search_cc(self, cc: str) -> MailReader:
        self._q.cc(cc)
        return self

    def search_bcc(self, bcc: str) -> MailReader:
        self._q.bcc(bcc)
        return self

    def search_subject(self, needle: str) -> MailReader:
        self._q.subject(needle)
        return self

    def search_body(self, needle: str) -> MailReader:
        self._q.body(needle)
        return self

    def search_text(self, needle: str) -> MailReader:
        self._q.text(needle)
        return self

    def keyword(self, keyword: str) -> MailReader:
        self._q.keyword(keyword)
        return self

    def unkeyword(self, keyword: str) -> MailReader:
        self._q.unkeyword(keyword)
        return self

    def before_date(self, value: DateLike) -> MailReader:
        self._q.before(value)
        return self

    def since_date(self, value: DateLike) -> MailReader:
        self._q.since(value)
        return self

    def on_date(self, value: DateLike) -> MailReader:
        self._q.on(value)
        return self

    # -----------------------
    # Retrieval
    # -----------------------

    def request(self) -> FetchRequest:
        return FetchRequest(
            criteria=self._q.copy(),
            pagination=Pagination(order=self._order, limit=self._limit, page=self._page),
            mailbox=self._mailbox,
            uid=self._id,
        )

    def get(self) -> List[DecodedMessage]:
        self.last_result = self._pipeline.run(self.request())
        return self.last_result.messages

    def get_email(self, uid: int) -> Optional[DecodedMessage]:
        if self._mailbox:
            self.session.select(self._mailbox)
        return self._pipeline.fetch_message(uid)

    def get_email_by_uid(self, uid: int) -> Optional[DecodedMessage]:
        return self.get_email(uid)

    def get_email_by_sequence(self, sequence: int) -> Optional[DecodedMessage]:
        if self._mailbox:
            self.session.select(self._mailbox)
        uid = self.session.sequence_to_uid(sequence)
        if uid is None:
            return None
        return self._pipeline.fetch_message(uid, sequence=sequence)

    def reset(self) -> MailReader:
        """Drop all filters, paging and the selected id."""
        self._q = SearchCriteria()
        self._id = None
        self._order = DESC
        self._limit = None
        self._page = None
        self.last_result = None
        return self

    # -----------------------
    # Mailbox actions
    # -----------------------

    def mark_as_read(self, uid: int) -> None:
        self.session.mark_seen(uid)

    def delete_email(self, uid: int, expunge: bool = False) -> None:
        """Flag for deletion; with expunge=True the mailbox is purged right away."""
        self.session.delete(uid)
        if expunge:
            self.session.expunge()

    def move_email_to_folder(self, uid: int, folder: str) -> bool:
        return self.session.move_to_folder(uid, folder)

    def status(self) -> Dict[str, int]:
        return self.session.mailbox_status()

    def folders(self) -> List[str]:
        return self.session.list_folders()

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "MailReader":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
