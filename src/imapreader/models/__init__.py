from imapreader.models.attachment import ATTACHMENT, INLINE, Attachment
from imapreader.models.message import Address, DecodedMessage, MessageFlags

__all__ = [
    "Address",
    "Attachment",
    "ATTACHMENT",
    "DecodedMessage",
    "INLINE",
    "MessageFlags",
]
