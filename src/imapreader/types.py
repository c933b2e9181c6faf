from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class MessageRef:
    uid: int
    mailbox: str = "INBOX"
    # Only meaningful inside the session that produced it.
    sequence: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "uid": self.uid,
            "mailbox": self.mailbox,
            "sequence": self.sequence,
        }
