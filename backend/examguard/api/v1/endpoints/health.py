import time

import psutil
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from ....core.cache import cache
from ....core.database import get_db
from ....utils.timezone import get_timezone_info

router = APIRouter()


@router.get("")
def get_health(db: Session = Depends(get_db)):
    """Service status: database, cache and basic host metrics. No authentication."""
    health_status = {
        "status": "healthy",
        "timestamp": time.time(),
        "service": "examguard-api",
        "timezone": get_timezone_info(),
        "services": {}
    }

    try:
        db.execute(text("SELECT 1"))
        health_status["services"]["database"] = "healthy"
    except Exception as e:
        health_status["services"]["database"] = f"error: {str(e)}"
        health_status["status"] = "unhealthy"

    if cache.enabled:
        health_status["services"]["cache"] = "healthy" if cache.health_check() else "unhealthy"
    else:
        health_status["services"]["cache"] = "disabled"

    health_status["system"] = {
        "cpu_percent": psutil.cpu_percent(interval=None),
        "memory_percent": psutil.virtual_memory().percent,
    }
    return health_status
