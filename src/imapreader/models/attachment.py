from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

INLINE = "inline"
ATTACHMENT = "attachment"


@dataclass(frozen=True)
class Attachment:
    id: str
    # "<id>-<display filename>"; also the persisted file name.
    name: str
    kind: str
    part: Optional[str] = None
    content_type: str = "application/octet-stream"
    data: Optional[bytes] = None
    file_path: Optional[str] = None

    def __post_init__(self) -> None:
        if self.kind not in (INLINE, ATTACHMENT):
            raise ValueError(f"kind must be {INLINE!r} or {ATTACHMENT!r}, got {self.kind!r}")
        if self.data is not None and self.file_path is not None:
            raise ValueError("Attachment holds either data or file_path, not both")

    @property
    def is_inline(self) -> bool:
        return self.kind == INLINE

    @property
    def size(self) -> Optional[int]:
        return len(self.data) if self.data is not None else None

    def __repr__(self) -> str:
        where = f"file_path={self.file_path!r}" if self.file_path else f"size={self.size} bytes"
        return (
            f"Attachment("
            f"id={self.id!r}, "
            f"name={self.name!r}, "
            f"kind={self.kind!r}, "
            f"part={self.part!r}, "
            f"{where})"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind,
            "part": self.part,
            "content_type": self.content_type,
            "size": self.size,
            "file_path": self.file_path,
        }
