from __future__ import annotations

import re
from datetime import date, datetime
from email.utils import parsedate_to_datetime
from typing import List, Union

from imapreader.errors import CriteriaError
from imapreader.utils import MONTHS, imap_date

DateLike = Union[str, date, datetime]

_IMAP_DATE_RE = re.compile(r"^\s*(\d{1,2})-([A-Za-z]{3})-(\d{4})\s*$")


def quote(value: str) -> str:
    """Wrap a search string in double quotes, escaping \\ and "."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def parse_date(value: DateLike) -> date:
    """
    Accepts date/datetime objects, ISO strings (2024-01-05, 2024-01-05T10:00),
    IMAP strings (5-Jan-2024) and RFC 2822 dates.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        raise CriteriaError(f"Cannot use {value!r} as a search date")

    s = value.strip()
    try:
        return date.fromisoformat(s)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(s).date()
    except ValueError:
        pass

    m = _IMAP_DATE_RE.match(s)
    if m:
        day, mon, year = m.groups()
        months = [x.lower() for x in MONTHS]
        if mon.lower() in months:
            try:
                return date(int(year), months.index(mon.lower()) + 1, int(day))
            except ValueError as e:
                raise CriteriaError(f"Invalid search date {value!r}: {e}") from e

    try:
        return parsedate_to_datetime(s).date()
    except (TypeError, ValueError, IndexError):
        pass

    raise CriteriaError(f"Unparseable search date {value!r}")


class SearchCriteria:
    """
    Ordered IMAP SEARCH criteria.

    Each call appends one token in order; build() joins them. Nothing is
    deduplicated or checked for contradictions (SEEN UNSEEN simply matches
    nothing).

    Example:
        q = SearchCriteria().unseen().from_("alerts@example.com").since("2024-01-05")
        q.build()  # 'UNSEEN FROM "alerts@example.com" SINCE "05-Jan-2024"'
    """

    def __init__(self) -> None:
        self.parts: List[str] = []

    # -----------------------
    # Primitives
    # -----------------------

    def flag(self, name: str) -> SearchCriteria:
        self.parts.append(name.upper())
        return self

    def quoted(self, keyword: str, value: str) -> SearchCriteria:
        self.parts.append(f"{keyword.upper()} {quote(value)}")
        return self

    def date(self, keyword: str, value: DateLike) -> SearchCriteria:
        d = parse_date(value)
        self.parts.append(f"{keyword.upper()} {quote(imap_date(d))}")
        return self

    def raw(self, *tokens: str) -> SearchCriteria:
        self.parts.extend(t for t in tokens if t)
        return self

    def build(self) -> str:
        if not self.parts:
            return "ALL"
        return " ".join(self.parts)

    def copy(self) -> SearchCriteria:
        q = SearchCriteria()
        q.parts = list(self.parts)
        return q

    def __bool__(self) -> bool:
        return bool(self.parts)

    def __str__(self) -> str:
        return self.build()

    def __repr__(self) -> str:
        return f"SearchCriteria({self.build()!r})"

    # -----------------------
    # Flags
    # -----------------------

    def all(self) -> SearchCriteria:
        return self.flag("ALL")

    def seen(self) -> SearchCriteria:
        return self.flag("SEEN")

    def unseen(self) -> SearchCriteria:
        return self.flag("UNSEEN")

    def flagged(self) -> SearchCriteria:
        return self.flag("FLAGGED")

    def unflagged(self) -> SearchCriteria:
        return self.flag("UNFLAGGED")

    def answered(self) -> SearchCriteria:
        return self.flag("ANSWERED")

    def unanswered(self) -> SearchCriteria:
        return self.flag("UNANSWERED")

    def deleted(self) -> SearchCriteria:
        return self.flag("DELETED")

    def undeleted(self) -> SearchCriteria:
        return self.flag("UNDELETED")

    def draft(self) -> SearchCriteria:
        return self.flag("DRAFT")

    def undraft(self) -> SearchCriteria:
        return self.flag("UNDRAFT")

    def recent(self) -> SearchCriteria:
        return self.flag("RECENT")

    def new(self) -> SearchCriteria:
        return self.flag("NEW")

    def old(self) -> SearchCriteria:
        return self.flag("OLD")

    # -----------------------
    # String matches
    # -----------------------

    def from_(self, value: str) -> SearchCriteria:
        return self.quoted("FROM", value)

    def to(self, value: str) -> SearchCriteria:
        return self.quoted("TO", value)

    def cc(self, value: str) -> SearchCriteria:
        return self.quoted("CC", value)

    def bcc(self, value: str) -> SearchCriteria:
        return self.quoted("BCC", value)

    def subject(self, value: str) -> SearchCriteria:
        if value:
            self.quoted("SUBJECT", value)
        return self

    def body(self, value: str) -> SearchCriteria:
        if value:
            self.quoted("BODY", value)
        return self

    def text(self, value: str) -> SearchCriteria:
        return self.quoted("TEXT", value)

    def keyword(self, value: str) -> SearchCriteria:
        return self.quoted("KEYWORD", value)

    def unkeyword(self, value: str) -> SearchCriteria:
        return self.quoted("UNKEYWORD", value)

    def header(self, name: str, value: str) -> SearchCriteria:
        self.parts.append(f"HEADER {quote(name)} {quote(value)}")
        return self

    # -----------------------
    # Dates
    # -----------------------

    def before(self, value: DateLike) -> SearchCriteria:
        return self.date("BEFORE", value)

    def since(self, value: DateLike) -> SearchCriteria:
        return self.date("SINCE", value)

    def on(self, value: DateLike) -> SearchCriteria:
        return self.date("ON", value)
