from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from tool_lending.models.lending_models import NotificationQueue


LOGGER = logging.getLogger("tool_lending.notifications")


class RentalNotifier(Protocol):
    def notify(self, rental_id: int, notification_type: str, payload: str) -> None:
        ...


class QueueNotifier:
    """Queues rental notifications in their own transaction.

    Called after the rental transition has committed. A failure here is logged
    and dropped; it never reaches the caller of the transition.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def notify(self, rental_id: int, notification_type: str, payload: str) -> None:
        try:
            with self._session_factory() as db, db.begin():
                db.add(
                    NotificationQueue(
                        RentalID=rental_id,
                        NotificationType=notification_type,
                        Payload=payload,
                        CreatedAt=datetime.now(),
                    )
                )
        except Exception:
            LOGGER.exception("Could not queue %s notification for rental %s", notification_type, rental_id)


def list_pending_notifications(db: Session) -> list[dict]:
    notifications = db.execute(
        select(NotificationQueue)
        .where(NotificationQueue.SentAt.is_(None))
        .order_by(NotificationQueue.CreatedAt, NotificationQueue.NotificationID)
    ).scalars().all()
    return [
        {
            "notificationID": n.NotificationID,
            "rentalID": n.RentalID,
            "type": n.NotificationType,
            "payload": n.Payload,
            "createdAt": n.CreatedAt,
        }
        for n in notifications
    ]
