"""In-app notification emitter.

``notify`` only adds a row to the current session; the caller's commit
decides whether it is persisted, so notifications are never written for a
transition that rolled back.
"""

from handyhire import db
from handyhire.models import Notification


def notify(recipient_id, type, message, related_id=None, related_type=None, data=None):
    """Queue a notification for ``recipient_id`` in the current transaction."""
    if not recipient_id:
        return None

    notification = Notification(
        user_id=recipient_id,
        type=type,
        message=message,
        related_id=related_id,
        related_type=related_type,
    )
    if data:
        notification.set_data(data)
    db.session.add(notification)
    return notification
