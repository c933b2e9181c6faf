from imapreader.config import IMAPConfig, ReaderConfig
from imapreader.fetch import FetchRequest, FetchResult, MessageFetchPipeline
from imapreader.imap import IMAPSession, Pagination, SearchCriteria
from imapreader.reader import MailReader

__all__ = [
    "FetchRequest",
    "FetchResult",
    "IMAPConfig",
    "IMAPSession",
    "MailReader",
    "MessageFetchPipeline",
    "Pagination",
    "ReaderConfig",
    "SearchCriteria",
]
