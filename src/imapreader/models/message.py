from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from imapreader.types import MessageRef

if TYPE_CHECKING:
    from imapreader.models.attachment import Attachment


@dataclass(frozen=True)
class Address:
    mailbox: str
    host: str
    name: Optional[str] = None

    @property
    def email(self) -> str:
        if not self.host:
            return self.mailbox
        return f"{self.mailbox}@{self.host}"

    @property
    def display(self) -> str:
        if self.name:
            return f"{self.name} <{self.email}>"
        return self.email

    def __str__(self) -> str:
        return self.display

    def to_dict(self) -> dict:
        return {
            "mailbox": self.mailbox,
            "host": self.host,
            "email": self.email,
            "name": self.name,
        }


@dataclass(frozen=True)
class MessageFlags:
    recent: bool = False
    unseen: bool = False
    flagged: bool = False
    answered: bool = False
    deleted: bool = False
    draft: bool = False

    @classmethod
    def from_imap(cls, flags) -> "MessageFlags":
        """Build from raw IMAP flags such as {'\\Seen', '\\Flagged'}."""
        norm = {f.upper() for f in flags}
        return cls(
            recent="\\RECENT" in norm,
            unseen="\\SEEN" not in norm,
            flagged="\\FLAGGED" in norm,
            answered="\\ANSWERED" in norm,
            deleted="\\DELETED" in norm,
            draft="\\DRAFT" in norm,
        )

    def to_dict(self) -> dict:
        return {
            "recent": self.recent,
            "unseen": self.unseen,
            "flagged": self.flagged,
            "answered": self.answered,
            "deleted": self.deleted,
            "draft": self.draft,
        }


@dataclass
class DecodedMessage:
    """
    A message rebuilt from its header, body structure and parts.

    Mutable on purpose: the part decoder fills in plain/html/attachments while
    it walks the structure tree. Treat it as read-only once returned.
    """

    ref: MessageRef
    subject: str = ""
    date: Optional[str] = None
    sent_at: Optional[datetime] = None
    from_address: Optional[Address] = None
    to: List[Address] = field(default_factory=list)
    cc: List[Address] = field(default_factory=list)
    reply_to: List[Address] = field(default_factory=list)
    flags: MessageFlags = field(default_factory=MessageFlags)
    size: int = 0
    raw_body: bytes = b""
    plain: Optional[str] = None
    html: Optional[str] = None
    custom_headers: List[str] = field(default_factory=list)
    attachments: List[Attachment] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def uid(self) -> int:
        return self.ref.uid

    def __repr__(self) -> str:
        return (
            f"DecodedMessage("
            f"uid={self.ref.uid!r}, "
            f"subject={self.subject!r}, "
            f"from={self.from_address!r}, "
            f"date={self.date!r}, "
            f"attachments={len(self.attachments)})"
        )

    def to_dict(self) -> dict:
        return {
            "ref": self.ref.to_dict(),
            "subject": self.subject,
            "date": self.date,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "from": self.from_address.to_dict() if self.from_address else None,
            "to": [a.to_dict() for a in self.to],
            "cc": [a.to_dict() for a in self.cc],
            "reply_to": [a.to_dict() for a in self.reply_to],
            "flags": self.flags.to_dict(),
            "size": self.size,
            "plain": self.plain,
            "html": self.html,
            "custom_headers": list(self.custom_headers),
            "attachments": [a.to_dict() for a in self.attachments],
            "warnings": list(self.warnings),
        }
