"""
Repositories for the audit store.

This module provides:
- One repository per store the ingestion pipeline talks to
- Connection-per-call semantics: every method opens and closes its own
  session, so repositories are safe to share across ingestion loops
- Translation of SQLAlchemy failures into RepositoryError and
  DuplicateKeyError
"""

import logging
from contextlib import contextmanager
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..core.events import AuditEvent, ExtractionRule
from .manager import DatabaseManager
from .models import AuditLog, Case, CaseExtraction, Target, TargetRule, utcnow

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Raised when the store cannot complete an operation."""
    pass


class DuplicateKeyError(RepositoryError):
    """Raised when a write violates a uniqueness constraint."""
    pass


@contextmanager
def _store_errors(operation: str):
    """Translate store failures raised inside the block."""
    try:
        yield
    except IntegrityError as e:
        raise DuplicateKeyError(f"Duplicate key during {operation}: {e.orig}") from e
    except SQLAlchemyError as e:
        logger.error(f"Store error during {operation}: {e}")
        raise RepositoryError(f"Store error during {operation}: {e}") from e
    except OSError as e:
        logger.error(f"Store unreachable during {operation}: {e}")
        raise RepositoryError(f"Store unreachable during {operation}: {e}") from e


class TargetRepository:
    """Read access to monitored targets."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    async def exists(self, name: str) -> bool:
        """Check whether a target with this exact name is registered."""
        with _store_errors(f"target lookup '{name}'"):
            async with self.db.session() as session:
                count = await session.scalar(
                    select(func.count()).select_from(Target).where(Target.name == name)
                )
                return bool(count)

    async def get_by_name(self, name: str) -> Optional[Target]:
        with _store_errors(f"target fetch '{name}'"):
            async with self.db.session() as session:
                return await session.scalar(select(Target).where(Target.name == name))


class RuleRepository:
    """Read access to extraction rules."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    async def get_rules_by_target(self, target_name: str) -> List[ExtractionRule]:
        """
        Load the active rules of a target.

        Args:
            target_name: Name of the target owning the rules

        Returns:
            Active rules ordered by rule_order, ties by rule id

        Raises:
            RepositoryError: If the store cannot be queried
        """
        stmt = (
            select(TargetRule, Target.name)
            .join(Target, TargetRule.target_id == Target.id)
            .where(Target.name == target_name, TargetRule.is_active.is_(True))
            .order_by(TargetRule.rule_order, TargetRule.id)
        )

        with _store_errors(f"rule load for target '{target_name}'"):
            async with self.db.session() as session:
                rows = (await session.execute(stmt)).all()

        rules = [
            ExtractionRule(
                id=rule.id,
                target_id=rule.target_id,
                target_name=name,
                rule_name=rule.rule_name,
                source_field=rule.source_field,
                regex_pattern=rule.regex_pattern,
                is_required=bool(rule.is_required),
                is_active=bool(rule.is_active),
                rule_order=rule.rule_order,
            )
            for rule, name in rows
        ]

        logger.info(f"Loaded {len(rules)} extraction rules for target: {target_name}")
        return rules


def _event_columns(event: AuditEvent) -> dict:
    return {
        "target": event.target,
        "session_id": event.session_id,
        "entry_id": event.entry_id,
        "statement": event.statement,
        "db_user": event.db_user,
        "user_host": event.user_host,
        "terminal": event.terminal,
        "action": event.action,
        "return_code": event.return_code,
        "owner": event.owner,
        "name": event.name,
        "auth_privileges": event.auth_privileges,
        "auth_grantee": event.auth_grantee,
        "new_owner": event.new_owner,
        "new_name": event.new_name,
        "os_user": event.os_user,
        "privilege_used": event.privilege_used,
        "timestamp": event.timestamp,
        "bind_variables": event.bind_variables,
        "sql_text": event.sql_text,
        "produced_at": event.produced_at,
    }


class AuditLogRepository:
    """Persistence of decoded audit events."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    async def upsert(self, event: AuditEvent, partition: int, offset: int) -> None:
        """
        Insert an event, or update it and bump its reprocessing counter.

        A new row starts with process_counter = 1; every later upsert of
        the same event id increments it by one and refreshes consumed_at.

        Args:
            event: Decoded audit event
            partition: Stream partition of the delivery
            offset: Stream offset of the delivery

        Raises:
            RepositoryError: If the store cannot complete the write
        """
        columns = _event_columns(event)

        with _store_errors(f"audit log upsert '{event.id}'"):
            async with self.db.session() as session:
                found = await session.scalar(select(AuditLog.id).where(AuditLog.id == event.id))

                if found is None:
                    now = utcnow()
                    session.add(AuditLog(
                        id=event.id,
                        kafka_partition=partition,
                        kafka_offset=offset,
                        process_counter=1,
                        processed_at=now,
                        consumed_at=now,
                        **columns,
                    ))
                    try:
                        await session.commit()
                        logger.debug(
                            f"Inserted audit log {event.id} (partition: {partition}, offset: {offset})"
                        )
                        return
                    except IntegrityError as e:
                        # Inserted concurrently by another consumer; update instead
                        conflict = e
                        await session.rollback()
                else:
                    conflict = None

                result = await session.execute(
                    update(AuditLog)
                    .where(AuditLog.id == event.id)
                    .values(
                        kafka_partition=partition,
                        kafka_offset=offset,
                        process_counter=AuditLog.process_counter + 1,
                        consumed_at=utcnow(),
                        **columns,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    logger.error(f"Audit log {event.id} was neither inserted nor updated: {conflict}")
                    raise RepositoryError(
                        f"Audit log {event.id} was neither inserted nor updated"
                    ) from conflict
                await session.commit()
                logger.debug(
                    f"Updated audit log {event.id} (partition: {partition}, offset: {offset})"
                )

    async def is_processed(self, event_id: str) -> bool:
        """Check whether an event has been stored at least once."""
        with _store_errors(f"audit log lookup '{event_id}'"):
            async with self.db.session() as session:
                count = await session.scalar(
                    select(func.count()).select_from(AuditLog).where(AuditLog.id == event_id)
                )
                return bool(count)

    async def get(self, event_id: str) -> Optional[AuditLog]:
        with _store_errors(f"audit log fetch '{event_id}'"):
            async with self.db.session() as session:
                return await session.get(AuditLog, event_id)


class CaseRepository:
    """Persistence of review cases."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    async def exists_for_audit_log(self, audit_log_id: str) -> bool:
        with _store_errors(f"case lookup for audit log '{audit_log_id}'"):
            async with self.db.session() as session:
                count = await session.scalar(
                    select(func.count()).select_from(Case).where(Case.audit_log_id == audit_log_id)
                )
                return bool(count)

    async def create(self, case: Case) -> str:
        """
        Store a new case.

        Args:
            case: Case to insert

        Returns:
            The case id

        Raises:
            DuplicateKeyError: If a case already exists for the audit log
            RepositoryError: If the store cannot complete the write
        """
        with _store_errors(f"case create for audit log '{case.audit_log_id}'"):
            async with self.db.session() as session:
                session.add(case)
                await session.commit()

        logger.debug(f"Created case {case.id} for audit log {case.audit_log_id}")
        return case.id

    async def get_by_id(self, case_id: str) -> Optional[Case]:
        with _store_errors(f"case fetch '{case_id}'"):
            async with self.db.session() as session:
                return await session.get(Case, case_id)

    async def get_by_audit_log_id(self, audit_log_id: str) -> Optional[Case]:
        with _store_errors(f"case fetch for audit log '{audit_log_id}'"):
            async with self.db.session() as session:
                return await session.scalar(select(Case).where(Case.audit_log_id == audit_log_id))


class CaseExtractionRepository:
    """Persistence of the extracted values attached to cases."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    async def create_batch(self, extractions: List[CaseExtraction]) -> int:
        """
        Store extraction rows in one transaction.

        Returns:
            Number of rows written (0 for an empty batch, without a
            store round trip)
        """
        if not extractions:
            return 0

        with _store_errors(f"case extraction batch for case '{extractions[0].case_id}'"):
            async with self.db.session() as session:
                session.add_all(extractions)
                await session.commit()

        logger.debug(
            f"Created {len(extractions)} case extractions for case {extractions[0].case_id}"
        )
        return len(extractions)

    async def get_by_case_id(self, case_id: str) -> List[CaseExtraction]:
        stmt = (
            select(CaseExtraction)
            .where(CaseExtraction.case_id == case_id)
            .order_by(CaseExtraction.extracted_at, CaseExtraction.id)
        )
        with _store_errors(f"case extraction fetch for case '{case_id}'"):
            async with self.db.session() as session:
                return list((await session.scalars(stmt)).all())

    async def get_by_audit_log_id(self, audit_log_id: str) -> List[CaseExtraction]:
        stmt = (
            select(CaseExtraction)
            .where(CaseExtraction.audit_log_id == audit_log_id)
            .order_by(CaseExtraction.extracted_at, CaseExtraction.id)
        )
        with _store_errors(f"case extraction fetch for audit log '{audit_log_id}'"):
            async with self.db.session() as session:
                return list((await session.scalars(stmt)).all())
