from shareswap.db.database import close_db_async, get_session, init_db_async
from shareswap.db.models import Base, TradeSubmission
from shareswap.db.submissions import SubmissionJournal

__all__ = [
    "Base",
    "SubmissionJournal",
    "TradeSubmission",
    "close_db_async",
    "get_session",
    "init_db_async",
]
