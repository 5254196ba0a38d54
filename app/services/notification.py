"""
Notification service for referral events

Delivery is fire-and-forget: a failure is logged and never rolls back the
referral change that triggered it.
"""

from typing import Any, Dict, List, Optional, Tuple
from enum import Enum
import logging

logger = logging.getLogger(__name__)

class NotificationType(str, Enum):
    NEW_REFERRAL = "new_referral"
    REFERRAL_CONFIRMED = "referral_confirmed"
    REFERRAL_REJECTED = "referral_rejected"
    BADGE_AWARDED = "badge_awarded"
    DEAL_VERIFIED = "deal_verified"

class ReferralNotifier:
    """Base notifier; subclasses implement _dispatch"""

    async def notify(
        self,
        member_id: str,
        notification_type: NotificationType,
        data: Optional[Dict[str, Any]] = None
    ) -> bool:
        """Send a notification, swallowing delivery errors"""
        try:
            await self._dispatch(str(member_id), notification_type, data or {})
            return True
        except Exception as e:
            logger.error(
                f"Failed to send {notification_type.value} notification to member {member_id}: {str(e)}"
            )
            return False

    async def _dispatch(
        self,
        member_id: str,
        notification_type: NotificationType,
        data: Dict[str, Any]
    ) -> None:
        raise NotImplementedError

class CeleryReferralNotifier(ReferralNotifier):
    """Enqueue delivery on the notifications queue"""

    async def _dispatch(self, member_id, notification_type, data) -> None:
        from app.tasks.notification_tasks import deliver_referral_notification

        deliver_referral_notification.delay(member_id, notification_type.value, data)

class RecordingNotifier(ReferralNotifier):
    """Keeps notifications in memory; used in development and tests"""

    def __init__(self):
        self.sent: List[Tuple[str, NotificationType, Dict[str, Any]]] = []

    async def _dispatch(self, member_id, notification_type, data) -> None:
        self.sent.append((member_id, notification_type, data))

    def of_type(self, notification_type: NotificationType) -> List[Tuple[str, NotificationType, Dict[str, Any]]]:
        return [n for n in self.sent if n[1] == notification_type]
