from imapreader.imap.bodystructure import BodyPart, body_part_from_wire
from imapreader.imap.pagination import Page, Pagination
from imapreader.imap.query import SearchCriteria
from imapreader.imap.session import IMAPSession, MailSession

__all__ = [
    "BodyPart",
    "IMAPSession",
    "MailSession",
    "Page",
    "Pagination",
    "SearchCriteria",
    "body_part_from_wire",
]
