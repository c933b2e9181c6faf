from __future__ import annotations


class ReaderError(Exception):
    """Base class for every error raised by imapreader."""


class ConfigError(ReaderError):
    pass


class AuthError(ReaderError):
    pass


class IMAPError(ReaderError):
    """The server answered a command with a non-OK status."""


class IMAPConnectionError(IMAPError):
    """The session could not be opened or was lost mid-command."""


class CriteriaError(ReaderError, ValueError):
    """A search criterion could not be turned into a valid token."""


class ParseError(ReaderError):
    pass


class EncodingError(ReaderError):
    """Charset conversion failed. Never leaves the converter."""


class AttachmentWriteError(ReaderError):
    def __init__(self, path: str, reason: object) -> None:
        super().__init__(f"Could not write attachment to {path!r}: {reason}")
        self.path = path
        self.reason = reason
