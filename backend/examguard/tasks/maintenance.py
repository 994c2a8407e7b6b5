from ..core.celery_app import celery_app
from ..core.database import SessionLocal
import logging

logger = logging.getLogger(__name__)


@celery_app.task(name="expire_stale_attempts")
def expire_stale_attempts():
    """Close in-progress attempts that ran past their deadline plus grace period."""
    # Imported here: the attempt service queues notification tasks from this package
    from ..services.attempt_service import AttemptService

    db = SessionLocal()
    try:
        expired = AttemptService(db).expire_stale_attempts()
        if expired:
            logger.info(f"Expired {expired} stale exam attempts")
        return {"expired": expired}
    except Exception as exc:
        db.rollback()
        logger.error(f"Error in expire_stale_attempts: {exc}")
        raise
    finally:
        db.close()
