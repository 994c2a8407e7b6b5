from ..core.celery_app import celery_app
from ..core.cache import cache
from ..utils.timezone import utc_now
import logging

logger = logging.getLogger(__name__)

NOTIFICATION_LIMIT = 50
NOTIFICATION_TTL = 7 * 24 * 3600


def teacher_notifications_key(teacher_id: int) -> str:
    return f"teacher_notifications:{teacher_id}"


@celery_app.task(bind=True, name="send_integrity_alert", max_retries=3)
def send_integrity_alert(self, payload: dict):
    """Tell the exam's teacher that an attempt was flagged or terminated."""
    notification = {
        "type": "integrity_alert",
        "title": f"Attempt {payload.get('status', '').lower()}: {payload.get('examTitle')}",
        "message": (
            f"Student {payload.get('studentId')} attempt {payload.get('attemptId')} "
            f"ended {payload.get('status')} with risk score {payload.get('riskScore')} "
            f"({payload.get('reason')})"
        ),
        "data": payload,
        "created_at": utc_now().isoformat(),
        "read": False
    }

    logger.warning(f"Integrity alert for teacher {payload.get('teacherId')}: {notification['message']}")
    stored = cache.push_capped(
        teacher_notifications_key(payload.get("teacherId")),
        notification,
        limit=NOTIFICATION_LIMIT,
        ttl=NOTIFICATION_TTL
    )
    return {"success": True, "stored": stored, "notification": notification}
