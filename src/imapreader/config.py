from __future__ import annotations

import codecs
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from dotenv import load_dotenv

from imapreader.auth import IMAPAuth, PasswordAuth
from imapreader.errors import ConfigError

ENV_PREFIX = "IMAPREADER_"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(ENV_PREFIX + name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigError(f"{ENV_PREFIX}{name} must be a boolean, got {raw!r}")


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(ENV_PREFIX + name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from e


@dataclass(frozen=True)
class IMAPConfig:
    host: str
    port: int = 993
    use_ssl: bool = True
    timeout: Optional[float] = 30.0
    auth: Optional[IMAPAuth] = field(default=None, repr=False)
    mailbox: str = "INBOX"

    def __post_init__(self) -> None:
        if not self.host:
            raise ConfigError("IMAP host required")
        if not self.port or self.port <= 0:
            raise ConfigError("IMAP port required")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "IMAPConfig":
        """
        Build from IMAPREADER_HOST / _PORT / _SSL / _TIMEOUT / _USER /
        _PASSWORD / _MAILBOX. A .env file in the working directory is loaded
        first when reading the process environment.
        """
        if env is None:
            load_dotenv(override=False)
            env = os.environ

        user = env.get(ENV_PREFIX + "USER")
        password = env.get(ENV_PREFIX + "PASSWORD")
        auth = PasswordAuth(user, password or "") if user else None

        return cls(
            host=env.get(ENV_PREFIX + "HOST", ""),
            port=_env_int(env, "PORT", 993),
            use_ssl=_env_bool(env, "SSL", True),
            timeout=float(_env_int(env, "TIMEOUT", 30)),
            auth=auth,
            mailbox=env.get(ENV_PREFIX + "MAILBOX", "INBOX"),
        )


@dataclass(frozen=True)
class ReaderConfig:
    # Where attachments are persisted; None keeps them in memory.
    attachment_dir: Optional[str] = None
    mark_as_read: bool = True
    encoding: str = "UTF-8"
    search_charset: Optional[str] = None
    max_depth: int = 32
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        try:
            codecs.lookup(self.encoding)
        except LookupError as e:
            raise ConfigError(f"Unknown target encoding {self.encoding!r}") from e
        if self.max_depth < 1:
            raise ConfigError("max_depth must be >= 1")
        if self.attachment_dir:
            if not os.path.isdir(self.attachment_dir):
                raise ConfigError(f'Directory "{self.attachment_dir}" could not be found.')
            if not os.access(self.attachment_dir, os.W_OK):
                raise ConfigError(f'Directory "{self.attachment_dir}" is not writable.')

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ReaderConfig":
        if env is None:
            load_dotenv(override=False)
            env = os.environ

        return cls(
            attachment_dir=env.get(ENV_PREFIX + "ATTACHMENT_DIR") or None,
            mark_as_read=_env_bool(env, "MARK_AS_READ", True),
            encoding=env.get(ENV_PREFIX + "ENCODING", "UTF-8"),
            search_charset=env.get(ENV_PREFIX + "SEARCH_CHARSET") or None,
            max_depth=_env_int(env, "MAX_DEPTH", 32),
            log_level=env.get(ENV_PREFIX + "LOG_LEVEL", "INFO").upper(),
        )
