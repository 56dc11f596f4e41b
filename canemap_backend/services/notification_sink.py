"""
Notification sink - in-app notification document plus a best-effort push.

Events are addressed either to a role (broadcast, any reviewer can pick it
up) or to a single user.
"""
import logging
from datetime import datetime

from canemap_backend.config.environment import NOTIFICATIONS_COLLECTION

logger = logging.getLogger(__name__)


class NotificationSink:

    def __init__(self, store, firebase_service=None):
        self.store = store
        self.firebase_service = firebase_service

    def publish(self, event):
        """
        Args:
            event: dict with 'role' and/or 'userId', 'type', 'title', 'message',
                optional 'relatedIds' (dict) and 'extra' (dict merged into the document)

        Returns:
            str: id of the stored notification

        Raises:
            ValueError: the event has no recipient
            RecordsError: the notification document could not be written
        """
        role = event.get('role')
        user_id = event.get('userId')
        if not role and not user_id:
            raise ValueError("Notification needs a role or a userId")

        now = datetime.utcnow()
        related_ids = dict(event.get('relatedIds') or {})
        document = {
            'title': event['title'],
            'message': event['message'],
            'type': event['type'],
            'relatedIds': related_ids,
            'relatedEntityId': next(iter(related_ids.values()), None),
            'read': False,
            'status': 'unread',  # legacy readers
            'timestamp': now,
            'createdAt': now,
        }
        if role:
            document['role'] = role
        if user_id:
            document['userId'] = user_id
        document.update(event.get('extra') or {})

        notification_id = self.store.put(NOTIFICATIONS_COLLECTION, document)
        logger.info(f"Notification {notification_id} created ({event['type']}) for "
                    f"{'role ' + role if role else 'user ' + str(user_id)}")

        self._push(role, user_id, event, notification_id)
        return notification_id

    def _push(self, role, user_id, event, notification_id):
        if self.firebase_service is None:
            return

        data = {'type': event['type'], 'notificationId': notification_id}
        data.update(event.get('relatedIds') or {})

        sent = True
        if role:
            sent = self.firebase_service.send_role_notification(role, event['title'], event['message'], data)
        if user_id:
            sent = self.firebase_service.send_user_notification(user_id, event['title'], event['message'], data) and sent
        if not sent:
            logger.warning(f"Push delivery failed for notification {notification_id} (non-critical)")
