"""Referral notification background tasks"""

from celery import Task
from celery.utils.log import get_task_logger
from typing import Any, Dict
import httpx

from app.core.celery_app import celery_app
from app.core.config import settings

logger = get_task_logger(__name__)

class NotificationTask(Task):
    """Base notification task with retry logic"""
    autoretry_for = (httpx.HTTPError,)
    retry_kwargs = {"max_retries": 3}
    retry_backoff = True
    retry_backoff_max = 600
    retry_jitter = True

@celery_app.task(base=NotificationTask, name="deliver_referral_notification")
def deliver_referral_notification(member_id: str, notification_type: str, data: Dict[str, Any]):
    """Hand a referral notification to the delivery webhook"""
    message = {
        "member_id": member_id,
        "type": notification_type,
        "data": data,
    }

    if not settings.NOTIFICATION_WEBHOOK_URL:
        logger.info(f"No notification webhook configured; {notification_type} for member {member_id} logged only")
        return {"success": False, "delivered": False}

    response = httpx.post(settings.NOTIFICATION_WEBHOOK_URL, json=message, timeout=10.0)
    response.raise_for_status()

    logger.info(f"Delivered {notification_type} notification to member {member_id}")
    return {"success": True, "delivered": True}
