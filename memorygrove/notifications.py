"""
Notification sinks for pipeline events.

The worker emits one event per successfully ingested image. Delivery is
fire-and-forget: the worker logs and ignores sink failures.
"""

import logging
from abc import ABC, abstractmethod

from sqlalchemy.orm import sessionmaker

from memorygrove.catalog.database import session_scope
from memorygrove.catalog.models import Notification

logger = logging.getLogger(__name__)

NEW_PHOTOS = "new_photos"


class NotificationSink(ABC):
    """Receives {ownerId, assetId} events from the worker."""

    @abstractmethod
    def notify_new_photo(self, owner_id: int, asset_id: int) -> None:
        pass


class LoggingNotificationSink(NotificationSink):
    """Writes events to the log only."""

    def notify_new_photo(self, owner_id: int, asset_id: int) -> None:
        logger.info(
            "New photo available",
            extra={"extra_fields": {"owner_id": owner_id, "asset_id": asset_id}},
        )


class DatabaseNotificationSink(NotificationSink):
    """Stores an unread in-app notification for the owner."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def notify_new_photo(self, owner_id: int, asset_id: int) -> None:
        with session_scope(self.session_factory) as db:
            db.add(Notification(
                user_id=owner_id,
                type=NEW_PHOTOS,
                title="New photo",
                body="A new photo has been added to your gallery",
                url=f"/gallery/{asset_id}",
            ))
