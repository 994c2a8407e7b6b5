import logging
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from ..models.exam import ExamAttempt
from ..models.incident import CheatingIncident
from ..models.enums import Severity

logger = logging.getLogger(__name__)


class IncidentService:
    """Append-only audit trail of integrity incidents.

    ``record`` only adds to the session; the caller owns the transaction so an
    incident commits together with the attempt change that caused it.
    """

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        attempt: ExamAttempt,
        incident_type: str,
        description: str,
        severity: Severity,
        evidence: Dict[str, Any]
    ) -> CheatingIncident:
        incident = CheatingIncident(
            student_id=attempt.student_id,
            exam_attempt_id=attempt.id,
            incident_type=incident_type,
            description=description,
            severity=severity,
            evidence=evidence
        )
        self.db.add(incident)
        logger.info(
            f"Incident {incident_type} ({severity.value}) recorded for attempt {attempt.id}, "
            f"student {attempt.student_id}"
        )
        return incident

    def get_attempt_incidents(self, attempt_id: str) -> List[CheatingIncident]:
        return self.db.query(CheatingIncident).filter(
            CheatingIncident.exam_attempt_id == attempt_id
        ).order_by(CheatingIncident.timestamp.desc(), CheatingIncident.id.desc()).all()

    def get_attempt_statistics(self, attempt_id: str) -> Dict[str, Any]:
        incidents = self.db.query(CheatingIncident).filter(
            CheatingIncident.exam_attempt_id == attempt_id
        ).order_by(CheatingIncident.id).all()

        stats = {
            "totalIncidents": len(incidents),
            "byType": {},
            "bySeverity": {severity.value: 0 for severity in Severity},
            "timeline": []
        }

        for incident in incidents:
            stats["byType"][incident.incident_type] = stats["byType"].get(incident.incident_type, 0) + 1
            stats["bySeverity"][incident.severity.value] += 1
            stats["timeline"].append({
                "timestamp": incident.timestamp,
                "type": incident.incident_type,
                "severity": incident.severity.value
            })

        return stats
