import logging
from abc import ABC, abstractmethod
from typing import Optional

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Fire-and-forget hook called when an article's analysis completes."""

    @abstractmethod
    async def notify_analysis_complete(self, user_id: Optional[str], article_id: str, title: str):
        ...


class LogNotifier(Notifier):
    """Default notifier: writes the event to the application log."""

    async def notify_analysis_complete(self, user_id: Optional[str], article_id: str, title: str):
        logger.info(f"Analysis complete for article {article_id} ('{title}') [user={user_id or '-'}]")
