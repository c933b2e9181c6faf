from __future__ import annotations

import imaplib
from dataclasses import dataclass, field

from imapreader.auth.base import AuthContext
from imapreader.errors import AuthError


@dataclass(frozen=True)
class PasswordAuth:
    username: str
    password: str = field(repr=False)

    def apply_imap(self, conn, ctx: AuthContext) -> None:
        try:
            typ, _ = conn.login(self.username, self.password)
        except imaplib.IMAP4.error as e:
            raise AuthError(f"IMAP login to {ctx.host}:{ctx.port} failed: {e}") from e
        if typ != "OK":
            raise AuthError("IMAP login failed (non-OK response)")
