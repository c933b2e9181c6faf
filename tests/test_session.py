import imaplib

import pytest

from imapreader.auth import PasswordAuth
from imapreader.config import IMAPConfig
from imapreader.errors import AuthError, ConfigError, CriteriaError, IMAPConnectionError, IMAPError, ParseError
from imapreader.imap.query import SearchCriteria
from imapreader.imap.session import IMAPSession, parse_list_line
from imapreader.reader import MailReader


class FakeConn:
    """
    Stand-in for an imaplib.IMAP4 connection.

    responses maps a command name ("select", "search", "uid_fetch", ...) to a
    (typ, data) tuple, an exception to raise, or a callable producing either.
    """

    def __init__(self, **responses):
        self.responses = responses
        self.calls = []

    def _reply(self, name, *args):
        self.calls.append((name,) + args)
        r = self.responses.get(name, ("OK", [b""]))
        if callable(r) and not isinstance(r, BaseException):
            r = r(*args)
        if isinstance(r, BaseException):
            raise r
        return r

    def names(self):
        return [c[0] for c in self.calls]

    def login(self, user, password):
        return self._reply("login", user, password)

    def logout(self):
        return self._reply("logout")

    def shutdown(self):
        self.calls.append(("shutdown",))

    def noop(self):
        return self._reply("noop")

    def select(self, mailbox, readonly=False):
        return self._reply("select", mailbox, readonly)

    def search(self, charset, *criteria):
        return self._reply("search", charset, *criteria)

    def fetch(self, ids, items):
        return self._reply("fetch", ids, items)

    def uid(self, command, *args):
        return self._reply("uid_" + command.lower(), *args)

    def expunge(self):
        return self._reply("expunge")

    def status(self, mailbox, items):
        return self._reply("status", mailbox, items)

    def list(self):
        return self._reply("list")


def make_session(conn, **kwargs):
    config = IMAPConfig(host="imap.example.com", auth=PasswordAuth("u", "p"))
    session = IMAPSession(config, **kwargs)
    session._conn = conn
    return session


def test_search_selects_readonly_once():
    conn = FakeConn(search=("OK", [b"1 2 3"]))
    session = make_session(conn)

    assert session.search("UNSEEN") == [1, 2, 3]
    assert session.search("ALL") == [1, 2, 3]

    selects = [c for c in conn.calls if c[0] == "select"]
    assert selects == [("select", "INBOX", True)]
    assert ("search", None, "UNSEEN") in conn.calls


def test_search_with_charset_encodes_criteria():
    conn = FakeConn(search=("OK", [b"4"]))
    session = make_session(conn)

    assert session.search('SUBJECT "café"', "UTF-8") == [4]
    assert ("search", "UTF-8", 'SUBJECT "café"'.encode("utf-8")) in conn.calls


def ascii_wire(ids):
    def search(charset, *criteria):
        # imaplib sends str arguments as ASCII.
        for arg in criteria:
            if isinstance(arg, str):
                arg.encode("ascii")
        return ("OK", [ids])

    return search


def test_non_ascii_search_without_charset_goes_out_as_utf8():
    conn = FakeConn(search=ascii_wire(b"7"))
    criteria = SearchCriteria().from_("José").build()

    assert make_session(conn).search(criteria) == [7]
    assert ("search", "UTF-8", 'FROM "José"'.encode("utf-8")) in conn.calls


def test_reader_searches_non_ascii_sender_on_default_config():
    conn = FakeConn(search=ascii_wire(b""))

    assert MailReader(make_session(conn)).from_("José").get() == []
    assert [c[1] for c in conn.calls if c[0] == "search"] == ["UTF-8"]


def test_criteria_unencodable_in_requested_charset():
    conn = FakeConn()
    with pytest.raises(CriteriaError):
        make_session(conn).search('FROM "José"', "US-ASCII")
    assert conn.calls == []


def test_search_empty_result():
    conn = FakeConn(search=("OK", [b""]))
    assert make_session(conn).search("ALL") == []


def test_select_switches_mailbox():
    conn = FakeConn(search=("OK", [b""]))
    session = make_session(conn)

    session.select("Archive/2024")
    session.search("ALL")

    assert ("select", '"Archive/2024"', True) in conn.calls
    assert session.mailbox == "Archive/2024"


def test_failed_select_raises():
    conn = FakeConn(select=("NO", [b"no such mailbox"]))
    with pytest.raises(IMAPError):
        make_session(conn).search("ALL")


def test_fetch_body_part_peek_and_section():
    conn = FakeConn(uid_fetch=("OK", [(b"1 (UID 42 BODY[1.2] {5}", b"hello"), b")"]))
    session = make_session(conn)

    assert session.fetch_body_part(42, "1.2") == b"hello"
    assert ("uid_fetch", "42", "(UID BODY.PEEK[1.2])") in conn.calls


def test_fetch_body_part_without_peek_selects_read_write():
    conn = FakeConn(uid_fetch=("OK", [(b"1 (UID 42 BODY[TEXT] {2}", b"hi"), b")"]))
    session = make_session(conn)

    assert session.fetch_body_part(42, None, peek=False) == b"hi"
    assert ("uid_fetch", "42", "(UID BODY[TEXT])") in conn.calls
    assert ("select", "INBOX", False) in conn.calls


def test_fetch_header_and_raw_sections():
    conn = FakeConn(uid_fetch=("OK", [(b"1 (UID 42 BODY[HEADER] {3}", b"a:b"), b")"]))
    session = make_session(conn)

    session.fetch_header(42)
    session.fetch_raw(42)

    assert ("uid_fetch", "42", "(UID BODY.PEEK[HEADER])") in conn.calls
    assert ("uid_fetch", "42", "(UID BODY.PEEK[])") in conn.calls


def test_fetch_missing_message_raises():
    conn = FakeConn(uid_fetch=("OK", [None]))
    with pytest.raises(IMAPError):
        make_session(conn).fetch_header(99)


def test_fetch_body_structure():
    line = b'1 (UID 42 BODYSTRUCTURE ("TEXT" "PLAIN" ("CHARSET" "utf-8") NIL NIL "7BIT" 5 1 NIL NIL NIL NIL))'
    conn = FakeConn(uid_fetch=("OK", [line]))

    part = make_session(conn).fetch_body_structure(42)

    assert part.content_type == "text/plain"
    assert part.charset == "utf-8"
    assert ("uid_fetch", "42", "(UID BODYSTRUCTURE)") in conn.calls


def test_fetch_body_structure_missing():
    conn = FakeConn(uid_fetch=("OK", [b"1 (UID 42)"]))
    with pytest.raises(ParseError):
        make_session(conn).fetch_body_structure(42)


def test_fetch_flags():
    meta = b'3 (UID 42 FLAGS (\\Seen \\Flagged) RFC822.SIZE 1234 INTERNALDATE "05-Jan-2024 10:00:00 +0000")'
    conn = FakeConn(uid_fetch=("OK", [meta]))

    info = make_session(conn).fetch_flags(42)

    assert info.uid == 42
    assert info.sequence == 3
    assert info.flags == {"\\Seen", "\\Flagged"}
    assert info.size == 1234
    assert info.internaldate == "05-Jan-2024 10:00:00 +0000"


def test_sequence_and_uid_conversion():
    conn = FakeConn(fetch=("OK", [b"3 (UID 42)"]), uid_fetch=("OK", [b"3 (UID 42)"]))
    session = make_session(conn)

    assert session.sequence_to_uid(3) == 42
    assert session.uid_to_sequence(42) == 3


def test_mark_seen_and_delete_store_flags():
    conn = FakeConn()
    session = make_session(conn)

    session.mark_seen(42)
    session.delete(43)

    assert ("uid_store", "42", "+FLAGS", "(\\Seen)") in conn.calls
    assert ("uid_store", "43", "+FLAGS", "(\\Deleted)") in conn.calls
    assert ("select", "INBOX", False) in conn.calls


def test_expunge_selects_read_write():
    conn = FakeConn()
    make_session(conn).expunge()
    assert conn.names() == ["select", "expunge"]
    assert ("select", "INBOX", False) in conn.calls


def test_expunge_failure_raises():
    conn = FakeConn(expunge=("NO", [b"read-only"]))
    with pytest.raises(IMAPError):
        make_session(conn).expunge()


def test_move_to_same_folder_is_noop():
    conn = FakeConn()
    assert make_session(conn).move_to_folder(42, "INBOX") is False
    assert conn.calls == []


def test_move_falls_back_to_copy_store_expunge():
    conn = FakeConn(uid_move=("NO", [b"MOVE not supported"]))
    session = make_session(conn)

    assert session.move_to_folder(42, "Archive") is True
    assert conn.names()[-4:] == ["uid_move", "uid_copy", "uid_store", "expunge"]
    assert ("uid_copy", "42", '"Archive"') in conn.calls


def test_mailbox_status():
    conn = FakeConn(status=("OK", [b"INBOX (MESSAGES 3 RECENT 0 UNSEEN 1 UIDNEXT 9 UIDVALIDITY 7)"]))
    assert make_session(conn).mailbox_status() == {
        "messages": 3,
        "recent": 0,
        "unseen": 1,
        "uidnext": 9,
        "uidvalidity": 7,
    }


def test_list_folders_skips_noselect_and_reads_literals():
    conn = FakeConn(
        list=(
            "OK",
            [
                b'(\\HasNoChildren) "/" "INBOX"',
                b'(\\Noselect \\HasChildren) "/" "[Gmail]"',
                b'(\\HasNoChildren) "/" "Sent Items"',
                (b'(\\HasNoChildren) "/" {7}', b"Archive"),
            ],
        )
    )
    assert make_session(conn).list_folders() == ["INBOX", "Sent Items", "Archive"]


def test_parse_list_line():
    assert parse_list_line(b'(\\HasNoChildren) "." "a \\"b\\""') == ({"\\HASNOCHILDREN"}, 'a "b"')
    assert parse_list_line(b"garbage") is None


def test_abort_reconnects_once(monkeypatch):
    broken = FakeConn(search=imaplib.IMAP4.abort("socket closed"))
    healthy = FakeConn(search=("OK", [b"5"]))
    session = make_session(broken)
    monkeypatch.setattr(session, "_open_new_connection", lambda: healthy)

    assert session.search("ALL") == [5]
    assert "logout" in broken.names()
    assert "search" in healthy.names()


def test_repeated_abort_raises_connection_error(monkeypatch):
    session = make_session(FakeConn(search=OSError("reset")))
    monkeypatch.setattr(session, "_open_new_connection", lambda: FakeConn(search=OSError("reset")))

    with pytest.raises(IMAPConnectionError):
        session.search("ALL")


def test_protocol_error_becomes_imap_error():
    conn = FakeConn(search=imaplib.IMAP4.error("BAD command"))
    with pytest.raises(IMAPError) as exc:
        make_session(conn).search("ALL")
    assert not isinstance(exc.value, IMAPConnectionError)


def test_connect_failure_raises_connection_error(monkeypatch):
    def refuse(*args, **kwargs):
        raise ConnectionRefusedError("refused")

    monkeypatch.setattr(imaplib, "IMAP4_SSL", refuse)
    session = IMAPSession(IMAPConfig(host="imap.example.com", auth=PasswordAuth("u", "p")))

    with pytest.raises(IMAPConnectionError):
        session.search("ALL")


def test_login_failure_closes_socket(monkeypatch):
    conn = FakeConn(login=("NO", [b"bad credentials"]))
    monkeypatch.setattr(imaplib, "IMAP4_SSL", lambda *a, **kw: conn)
    session = IMAPSession(IMAPConfig(host="imap.example.com", auth=PasswordAuth("u", "p")))

    with pytest.raises(AuthError):
        session.search("ALL")
    assert "shutdown" in conn.names()


def test_plain_connection_when_ssl_disabled(monkeypatch):
    conn = FakeConn(login=("OK", [b""]), search=("OK", [b"1"]))
    seen = {}

    def plain(host, port, timeout=None):
        seen.update(host=host, port=port, timeout=timeout)
        return conn

    monkeypatch.setattr(imaplib, "IMAP4", plain)
    config = IMAPConfig(host="localhost", port=143, use_ssl=False, timeout=5.0, auth=PasswordAuth("u", "p"))

    assert IMAPSession(config).search("ALL") == [1]
    assert seen == {"host": "localhost", "port": 143, "timeout": 5.0}
    assert ("login", "u", "p") in conn.calls


def test_from_config_requires_auth():
    with pytest.raises(ConfigError):
        IMAPSession.from_config(IMAPConfig(host="imap.example.com"))


def test_close_is_idempotent():
    conn = FakeConn()
    session = make_session(conn)

    session.close()
    session.close()

    assert conn.names() == ["logout"]
    assert session._conn is None


def test_ping():
    conn = FakeConn(noop=("OK", [b""]))
    make_session(conn).ping()
    assert conn.names() == ["noop"]


def test_ping_failure():
    conn = FakeConn(noop=("NO", [b"gone"]))
    with pytest.raises(IMAPError):
        make_session(conn).ping()
