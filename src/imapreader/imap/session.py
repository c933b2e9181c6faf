from __future__ import annotations

import imaplib
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol, Set

import structlog

from imapreader.auth import AuthContext
from imapreader.config import IMAPConfig
from imapreader.errors import AuthError, ConfigError, CriteriaError, IMAPConnectionError, IMAPError, ParseError
from imapreader.imap.bodystructure import BodyPart, body_part_from_wire, extract_bodystructure
from imapreader.imap.fetch_response import (
    FetchInfo,
    first_payload,
    flatten_fetch,
    iter_fetch_pieces,
    parse_fetch_info,
    parse_sequence,
    parse_uid,
)

logger = structlog.get_logger()

STATUS_ITEM_RE = re.compile(r"([A-Z]+)\s+(\d+)", re.IGNORECASE)
LIST_RE = re.compile(r'^\((?P<flags>[^)]*)\)\s+(?P<delim>"(?:[^"\\]|\\.)*"|NIL)\s+(?P<name>.+)$')


class MailSession(Protocol):
    """What the fetch pipeline needs from a mailbox connection."""

    mailbox: str

    def search(self, criteria: str, charset: Optional[str] = None) -> List[int]: ...

    def fetch_header(self, uid: int) -> bytes: ...

    def fetch_body_structure(self, uid: int) -> BodyPart: ...

    def fetch_body_part(self, uid: int, part: Optional[str] = None, peek: bool = True) -> bytes: ...

    def fetch_raw(self, uid: int, peek: bool = True) -> bytes: ...

    def fetch_flags(self, uid: int) -> FetchInfo: ...

    def sequence_to_uid(self, sequence: int) -> Optional[int]: ...

    def uid_to_sequence(self, uid: int) -> Optional[int]: ...

    def mark_seen(self, uid: int) -> None: ...

    def delete(self, uid: int) -> None: ...

    def expunge(self) -> None: ...

    def move_to_folder(self, uid: int, folder: str) -> bool: ...

    def mailbox_status(self) -> Dict[str, int]: ...

    def list_folders(self) -> List[str]: ...

    def select(self, mailbox: str) -> None: ...

    def close(self) -> None: ...


def _unquote_mailbox(name: str) -> str:
    name = name.strip()
    if len(name) >= 2 and name.startswith('"') and name.endswith('"'):
        return name[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    return name


def parse_list_line(raw: bytes) -> Optional[tuple]:
    """
    Split one LIST response line into (flags, mailbox name).
    """
    s = raw.decode("utf-8", errors="replace").strip()
    m = LIST_RE.match(s)
    if not m:
        return None
    flags = {f.upper() for f in m.group("flags").split() if f}
    return flags, _unquote_mailbox(m.group("name"))


@dataclass
class IMAPSession:
    """
    One stateful IMAP connection bound to a selected mailbox.

    The connection is opened lazily, guarded by a lock, and reopened once if
    the server aborts it mid-command. close() is idempotent.
    """

    config: IMAPConfig
    mailbox: str = ""
    max_retries: int = 1
    backoff_seconds: float = 0.0

    _conn: imaplib.IMAP4 | None = field(default=None, init=False, repr=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)
    _selected_mailbox: str | None = field(default=None, init=False, repr=False)
    _selected_readonly: bool | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if not self.mailbox:
            self.mailbox = self.config.mailbox

    @classmethod
    def from_config(cls, config: IMAPConfig) -> "IMAPSession":
        if config.auth is None:
            raise ConfigError("IMAPConfig.auth is required")
        return cls(config)

    # -----------------------
    # Connection management
    # -----------------------

    def _open_new_connection(self) -> imaplib.IMAP4:
        cfg = self.config
        if cfg.auth is None:
            raise ConfigError("IMAPConfig.auth is required")
        try:
            conn = (
                imaplib.IMAP4_SSL(cfg.host, cfg.port, timeout=cfg.timeout)
                if cfg.use_ssl
                else imaplib.IMAP4(cfg.host, cfg.port, timeout=cfg.timeout)
            )
        except imaplib.IMAP4.error as e:
            raise IMAPConnectionError(f"ERROR: Could Not Connect ({e})") from e
        except OSError as e:
            raise IMAPConnectionError(f"IMAP network error: {e}") from e

        try:
            cfg.auth.apply_imap(conn, AuthContext(host=cfg.host, port=cfg.port))
        except AuthError:
            try:
                conn.shutdown()
            except OSError:
                pass
            raise
        logger.info("imap_connected", host=cfg.host, port=cfg.port)
        return conn

    def _get_conn(self) -> imaplib.IMAP4:
        # Must be called with self._lock held
        if self._conn is not None:
            return self._conn
        self._conn = self._open_new_connection()
        self._selected_mailbox = None
        self._selected_readonly = None
        return self._conn

    def _reset_conn(self) -> None:
        # Must be called with self._lock held
        if self._conn is not None:
            try:
                self._conn.logout()
            except (imaplib.IMAP4.error, OSError):
                pass
        self._conn = None
        self._selected_mailbox = None
        self._selected_readonly = None

    def _run_with_conn(self, op: Callable[[imaplib.IMAP4], object]):
        """
        Run an operation with thread-safety and reconnect-on-abort retry.
        """
        last_exc: Optional[BaseException] = None
        attempts = self.max_retries + 1

        for attempt in range(attempts):
            with self._lock:
                conn = self._get_conn()
                try:
                    return op(conn)
                except (imaplib.IMAP4.abort, OSError) as e:
                    last_exc = e
                    logger.warning("imap_connection_aborted", attempt=attempt + 1, error=str(e))
                    self._reset_conn()
                except imaplib.IMAP4.error as e:
                    raise IMAPError(f"IMAP operation failed: {e}") from e

            if attempt < attempts - 1 and self.backoff_seconds > 0:
                time.sleep(self.backoff_seconds)

        raise IMAPConnectionError(f"IMAP connection repeatedly aborted: {last_exc}") from last_exc

    def ping(self) -> None:
        def _impl(conn: imaplib.IMAP4) -> None:
            typ, data = conn.noop()
            if typ != "OK":
                raise IMAPError(f"NOOP failed: {data}")

        self._run_with_conn(_impl)

    def close(self) -> None:
        with self._lock:
            self._reset_conn()

    def __enter__(self) -> "IMAPSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # -----------------------
    # Mailbox selection
    # -----------------------

    def _format_mailbox_arg(self, mailbox: str) -> str:
        if mailbox.upper() == "INBOX":
            return "INBOX"
        if mailbox.startswith('"') and mailbox.endswith('"'):
            return mailbox
        return f'"{mailbox}"'

    def _ensure_selected(self, conn: imaplib.IMAP4, readonly: bool) -> None:
        """
        Cache selected mailbox to avoid repeated SELECT/EXAMINE.
        RW selection satisfies both RW and RO operations.
        """
        # Must be called with self._lock held.
        if self._selected_mailbox == self.mailbox:
            if self._selected_readonly is False:
                return
            if readonly and self._selected_readonly is True:
                return

        typ, _ = conn.select(self._format_mailbox_arg(self.mailbox), readonly=readonly)
        if typ != "OK":
            raise IMAPError(f"select({self.mailbox!r}, readonly={readonly}) failed")

        self._selected_mailbox = self.mailbox
        self._selected_readonly = readonly

    def select(self, mailbox: str) -> None:
        with self._lock:
            self.mailbox = mailbox

    # -----------------------
    # SEARCH + id conversion
    # -----------------------

    def search(self, criteria: str, charset: Optional[str] = None) -> List[int]:
        """
        Run SEARCH and return message sequence numbers.

        Non-ASCII criteria without an explicit charset are sent as UTF-8.
        """
        if charset is None and not criteria.isascii():
            charset = "UTF-8"
        try:
            arg = criteria.encode(charset) if charset else criteria
        except (UnicodeEncodeError, LookupError) as e:
            raise CriteriaError(f"criteria cannot be sent as {charset}: {e}") from e

        def _impl(conn: imaplib.IMAP4) -> List[int]:
            self._ensure_selected(conn, readonly=True)
            typ, data = conn.search(charset, arg)
            if typ != "OK":
                raise IMAPError(f"SEARCH failed: {data}")
            raw = (data[0] if data else None) or b""
            return [int(x) for x in raw.split()]

        ids = self._run_with_conn(_impl)
        logger.debug("imap_search", mailbox=self.mailbox, criteria=criteria, matches=len(ids))
        return ids

    def sequence_to_uid(self, sequence: int) -> Optional[int]:
        def _impl(conn: imaplib.IMAP4) -> Optional[int]:
            self._ensure_selected(conn, readonly=True)
            typ, data = conn.fetch(str(sequence), "(UID)")
            if typ != "OK":
                raise IMAPError(f"FETCH UID failed seq={sequence}: {data}")
            for piece in iter_fetch_pieces(data or []):
                uid = parse_uid(piece.meta)
                if uid is not None:
                    return uid
            return None

        return self._run_with_conn(_impl)

    def uid_to_sequence(self, uid: int) -> Optional[int]:
        def _impl(conn: imaplib.IMAP4) -> Optional[int]:
            self._ensure_selected(conn, readonly=True)
            typ, data = conn.uid("FETCH", str(uid), "(UID)")
            if typ != "OK":
                raise IMAPError(f"FETCH seq failed uid={uid}: {data}")
            for piece in iter_fetch_pieces(data or []):
                if parse_uid(piece.meta) == uid:
                    return parse_sequence(piece.meta)
            return None

        return self._run_with_conn(_impl)

    # -----------------------
    # FETCH
    # -----------------------

    def _fetch_section(self, uid: int, section: str, peek: bool) -> bytes:
        item = f"BODY.PEEK[{section}]" if peek else f"BODY[{section}]"

        def _impl(conn: imaplib.IMAP4) -> bytes:
            self._ensure_selected(conn, readonly=peek)
            typ, data = conn.uid("FETCH", str(uid), f"(UID {item})")
            if typ != "OK":
                raise IMAPError(f"FETCH {item} failed uid={uid}: {data}")
            if not data or data[0] is None:
                raise IMAPError(f"Message uid={uid} not found in {self.mailbox!r}")
            return first_payload(data) or b""

        return self._run_with_conn(_impl)

    def fetch_header(self, uid: int) -> bytes:
        return self._fetch_section(uid, "HEADER", peek=True)

    def fetch_body_part(self, uid: int, part: Optional[str] = None, peek: bool = True) -> bytes:
        """Fetch one MIME section, or the whole body text when part is None."""
        return self._fetch_section(uid, part or "TEXT", peek=peek)

    def fetch_raw(self, uid: int, peek: bool = True) -> bytes:
        return self._fetch_section(uid, "", peek=peek)

    def fetch_body_structure(self, uid: int) -> BodyPart:
        def _impl(conn: imaplib.IMAP4) -> bytes:
            self._ensure_selected(conn, readonly=True)
            typ, data = conn.uid("FETCH", str(uid), "(UID BODYSTRUCTURE)")
            if typ != "OK":
                raise IMAPError(f"FETCH BODYSTRUCTURE failed uid={uid}: {data}")
            return flatten_fetch(data or [])

        line = self._run_with_conn(_impl)
        raw = extract_bodystructure(line)
        if raw is None:
            raise ParseError(f"No BODYSTRUCTURE in response for uid={uid}")
        return body_part_from_wire(raw)

    def fetch_flags(self, uid: int) -> FetchInfo:
        def _impl(conn: imaplib.IMAP4) -> FetchInfo:
            self._ensure_selected(conn, readonly=True)
            typ, data = conn.uid("FETCH", str(uid), "(UID FLAGS RFC822.SIZE INTERNALDATE)")
            if typ != "OK":
                raise IMAPError(f"FETCH FLAGS failed uid={uid}: {data}")
            for piece in iter_fetch_pieces(data or []):
                if parse_uid(piece.meta) == uid:
                    return parse_fetch_info(piece.meta, uid)
            raise IMAPError(f"Message uid={uid} not found in {self.mailbox!r}")

        return self._run_with_conn(_impl)

    # -----------------------
    # Mutations
    # -----------------------

    def _store(self, uid: int, mode: str, flags: Set[str]) -> None:
        def _impl(conn: imaplib.IMAP4) -> None:
            self._ensure_selected(conn, readonly=False)
            flag_list = "(" + " ".join(sorted(flags)) + ")"
            typ, data = conn.uid("STORE", str(uid), mode, flag_list)
            if typ != "OK":
                raise IMAPError(f"STORE failed: {data}")

        self._run_with_conn(_impl)

    def mark_seen(self, uid: int) -> None:
        self._store(uid, "+FLAGS", {r"\Seen"})

    def delete(self, uid: int) -> None:
        """Flag as \\Deleted; removed for good on the next expunge."""
        self._store(uid, "+FLAGS", {r"\Deleted"})

    def expunge(self) -> None:
        def _impl(conn: imaplib.IMAP4) -> None:
            self._ensure_selected(conn, readonly=False)
            typ, data = conn.expunge()
            if typ != "OK":
                raise IMAPError(f"EXPUNGE failed: {data}")

        self._run_with_conn(_impl)

    def move_to_folder(self, uid: int, folder: str) -> bool:
        if folder == self.mailbox:
            return False

        target = self._format_mailbox_arg(folder)

        def _impl(conn: imaplib.IMAP4) -> None:
            self._ensure_selected(conn, readonly=False)
            typ, _ = conn.uid("MOVE", str(uid), target)
            if typ == "OK":
                return
            # Server without the MOVE extension.
            steps = (
                ("COPY", lambda: conn.uid("COPY", str(uid), target)),
                ("STORE", lambda: conn.uid("STORE", str(uid), "+FLAGS.SILENT", r"(\Deleted)")),
                ("EXPUNGE", conn.expunge),
            )
            for name, step in steps:
                typ, data = step()
                if typ != "OK":
                    raise IMAPError(f"{name} failed while moving uid={uid} to {folder!r}: {data}")

        self._run_with_conn(_impl)
        logger.info("imap_message_moved", uid=uid, source=self.mailbox, target=folder)
        return True

    # -----------------------
    # Mailboxes
    # -----------------------

    def mailbox_status(self) -> Dict[str, int]:
        def _impl(conn: imaplib.IMAP4) -> Dict[str, int]:
            typ, data = conn.status(
                self._format_mailbox_arg(self.mailbox),
                "(MESSAGES RECENT UNSEEN UIDNEXT UIDVALIDITY)",
            )
            if typ != "OK" or not data or not data[0]:
                raise IMAPError(f"STATUS {self.mailbox!r} failed: {data}")
            line = data[0].decode(errors="ignore") if isinstance(data[0], bytes) else str(data[0])
            items = STATUS_ITEM_RE.findall(line[line.rfind("(") + 1 :])
            if not items:
                raise IMAPError(f"Unexpected STATUS response: {line!r}")
            return {name.lower(): int(value) for name, value in items}

        return self._run_with_conn(_impl)

    def list_folders(self) -> List[str]:
        def _impl(conn: imaplib.IMAP4) -> List[str]:
            typ, data = conn.list()
            if typ != "OK":
                raise IMAPError(f"LIST failed: {data}")

            folders: List[str] = []
            for raw in data or []:
                if not raw:
                    continue
                if isinstance(raw, tuple):
                    # Mailbox name sent as a literal.
                    parsed = parse_list_line(bytes(raw[0]).rsplit(b" ", 1)[0] + b' ""')
                    if parsed is None:
                        continue
                    flags, _ = parsed
                    name = bytes(raw[1]).decode("utf-8", errors="replace")
                else:
                    parsed = parse_list_line(raw)
                    if parsed is None:
                        continue
                    flags, name = parsed

                if r"\NOSELECT" in flags:
                    continue
                folders.append(name)
            return folders

        return self._run_with_conn(_impl)
