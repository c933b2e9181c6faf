from __future__ import annotations

import os
from typing import Protocol

import structlog

from imapreader.errors import AttachmentWriteError

logger = structlog.get_logger()


class ByteSink(Protocol):
    def exists(self, path: str) -> bool: ...

    def write(self, path: str, data: bytes) -> None: ...


class FileSystemSink:
    """Write-once files on the local disk."""

    def exists(self, path: str) -> bool:
        return os.path.exists(path)

    def write(self, path: str, data: bytes) -> None:
        try:
            with open(path, "xb") as fh:
                fh.write(data)
        except FileExistsError:
            logger.debug("attachment_exists", path=path)
        except OSError as e:
            raise AttachmentWriteError(path, e) from e
        else:
            logger.debug("attachment_written", path=path, size=len(data))
