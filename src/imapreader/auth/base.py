from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class AuthContext:
    host: str
    port: int


class IMAPAuth(Protocol):
    def apply_imap(self, conn, ctx: AuthContext) -> None: ...
