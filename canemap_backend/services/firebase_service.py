"""
Push delivery through Firebase Cloud Messaging topics.

Reviewer devices subscribe to their role topic (``role_sra``), every device
to its owner's topic (``user_<id>``). Delivery is best effort: callers get
False back, never an exception.
"""
import logging
from typing import Optional, Dict, Any

from firebase_admin import messaging

from canemap_backend.config.credentials import get_credential_manager

logger = logging.getLogger(__name__)


def topic_for_role(role: str) -> str:
    return f"role_{role}"


def topic_for_user(user_id: str) -> str:
    return f"user_{user_id}"


class FirebaseService:

    def __init__(self, available: Optional[bool] = None):
        if available is None:
            available = get_credential_manager().is_firebase_available()
        self.is_available = available
        if not self.is_available:
            logger.warning("Firebase is not available; push delivery disabled")

    @staticmethod
    def _data_payload(data: Optional[Dict[str, Any]]) -> Dict[str, str]:
        # FCM data values must be strings
        return {str(k): str(v) for k, v in (data or {}).items() if v is not None}

    def send_topic_notification(self, topic: str, title: str, body: str,
                                data: Optional[Dict[str, Any]] = None) -> bool:
        """
        Returns:
            bool: True if FCM accepted the message
        """
        if not self.is_available:
            logger.debug(f"Skipping push to {topic}: Firebase not available")
            return False

        message = messaging.Message(
            topic=topic,
            notification=messaging.Notification(title=title, body=body),
            data=self._data_payload(data),
        )
        try:
            message_id = messaging.send(message)
        except Exception as e:
            logger.error(f"Push to {topic} failed: {e}")
            return False

        logger.info(f"Push sent to {topic}: {message_id}")
        return True

    def send_role_notification(self, role: str, title: str, body: str,
                               data: Optional[Dict[str, Any]] = None) -> bool:
        """Broadcast to every device subscribed to the role topic"""
        return self.send_topic_notification(topic_for_role(role), title, body, data)

    def send_user_notification(self, user_id: str, title: str, body: str,
                               data: Optional[Dict[str, Any]] = None) -> bool:
        """Send to every device of one user"""
        return self.send_topic_notification(topic_for_user(user_id), title, body, data)
