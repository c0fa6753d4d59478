"""
Case creation with at-most-once semantics per audit log.

The existence check and the insert are not atomic; the unique constraint
on cases.audit_log_id decides races between consumers, and a violation
is treated as "case already exists".
"""

import logging
import uuid
from typing import List, Optional

from ..core.events import AuditEvent, ExtractedValue
from ..database import Case, CaseExtraction, CaseStatus, DuplicateKeyError
from ..database.models import utcnow

logger = logging.getLogger(__name__)


class CaseDeduplicator:
    """Creates a review case and its extraction rows for an event."""

    def __init__(self, case_repository, extraction_repository):
        self.case_repository = case_repository
        self.extraction_repository = extraction_repository

    async def ensure_case(self, event: AuditEvent, values: List[ExtractedValue]) -> Optional[str]:
        """
        Create a case for an event unless one already exists.

        Args:
            event: Stored audit event
            values: Values extracted from the event

        Returns:
            The new case id, or None when no case was created (no values,
            or a case already exists for the event)

        Raises:
            RepositoryError: If the store cannot complete a write
        """
        if not values:
            return None

        if await self.case_repository.exists_for_audit_log(event.id):
            logger.info(f"Case already exists for audit log {event.id}, skipping creation")
            return None

        now = utcnow()
        case = Case(
            id=str(uuid.uuid4()),
            audit_log_id=event.id,
            case_status=CaseStatus.OPEN.value,
            valid=None,
            created_at=now,
            updated_at=now,
        )

        try:
            case_id = await self.case_repository.create(case)
        except DuplicateKeyError:
            logger.info(f"Case for audit log {event.id} was created concurrently, skipping")
            return None

        extractions = [
            CaseExtraction(
                case_id=case_id,
                audit_log_id=event.id,
                rule_id=value.rule_id,
                rule_name=value.rule_name,
                regex_pattern=value.regex_pattern,
                source_field=value.source_field,
                field_value=value.value,
                extracted_at=now,
            )
            for value in values
        ]
        count = await self.extraction_repository.create_batch(extractions)

        logger.info(f"Created case {case_id} with {count} extraction(s) for audit log {event.id}")
        return case_id
