"""
SQLAlchemy models for the audit store.

Tables:
- targets: monitored databases/systems
- target_rules: per-target extraction rules (read-only here)
- audit_logs: one row per logical audited action, upserted on redelivery
- cases: at most one review case per audit log
- case_extractions: denormalized extracted values for a case
"""

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Integer,
    BigInteger,
    String,
    Text,
    Boolean,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    Index,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CaseStatus(str, enum.Enum):
    OPEN = "OPEN"
    ASSIGNED = "ASSIGNED"
    RESOLVED = "RESOLVED"


class CaseValidity(str, enum.Enum):
    YES = "YES"
    NO = "NO"


class Target(Base):
    __tablename__ = "targets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(128), nullable=False, unique=True)
    description = Column(String(512))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<Target(id={self.id}, name={self.name})>"


class TargetRule(Base):
    __tablename__ = "target_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    target_id = Column(Integer, ForeignKey("targets.id"), nullable=False)
    rule_name = Column(String(128), nullable=False)
    source_field = Column(String(64), nullable=False)
    regex_pattern = Column(Text, nullable=False)
    is_required = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    rule_order = Column(Integer, default=0, nullable=False)

    __table_args__ = (Index("ix_target_rules_target_order", "target_id", "rule_order"),)

    def __repr__(self):
        return (
            f"<TargetRule(id={self.id}, target_id={self.target_id}, rule_name={self.rule_name}, "
            f"rule_order={self.rule_order})>"
        )


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String(256), primary_key=True)
    target = Column(String(128), nullable=False, index=True)
    session_id = Column(BigInteger, default=0, nullable=False)
    entry_id = Column(Integer, default=0, nullable=False)
    statement = Column(Integer, default=0, nullable=False)
    db_user = Column(String(128))
    user_host = Column(String(256))
    terminal = Column(String(256))
    action = Column(Integer, default=0)
    return_code = Column(Integer, default=0)
    owner = Column(String(128))
    name = Column(String(256))
    auth_privileges = Column(String(256))
    auth_grantee = Column(String(256))
    new_owner = Column(String(128))
    new_name = Column(String(256))
    os_user = Column(String(128))
    privilege_used = Column(String(256))
    timestamp = Column(DateTime(timezone=True))
    bind_variables = Column(Text)
    sql_text = Column(Text)
    produced_at = Column(DateTime(timezone=True))

    # Stream position of the latest delivery
    kafka_partition = Column(Integer)
    kafka_offset = Column(BigInteger)

    # Incremented on every redelivery of the same logical event
    process_counter = Column(Integer, default=1, nullable=False)
    processed_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    consumed_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return (
            f"<AuditLog(id={self.id}, target={self.target}, "
            f"process_counter={self.process_counter})>"
        )


class Case(Base):
    __tablename__ = "cases"

    id = Column(String(36), primary_key=True)
    audit_log_id = Column(String(256), ForeignKey("audit_logs.id"), nullable=False)
    case_status = Column(String(16), default=CaseStatus.OPEN.value, nullable=False)
    valid = Column(String(3))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    resolved_at = Column(DateTime(timezone=True))
    resolved_by = Column(String(128))
    resolution_notes = Column(Text)

    # One case per audit log; the final arbiter against concurrent creators
    __table_args__ = (UniqueConstraint("audit_log_id", name="uq_cases_audit_log_id"),)

    def __repr__(self):
        return (
            f"<Case(id={self.id}, audit_log_id={self.audit_log_id}, "
            f"case_status={self.case_status})>"
        )


class CaseExtraction(Base):
    __tablename__ = "case_extractions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    case_id = Column(String(36), ForeignKey("cases.id"), nullable=False, index=True)
    audit_log_id = Column(String(256), nullable=False, index=True)
    rule_id = Column(Integer, nullable=False)
    rule_name = Column(String(128), nullable=False)
    regex_pattern = Column(Text, nullable=False)
    source_field = Column(String(64), nullable=False)
    field_value = Column(Text)
    extracted_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return (
            f"<CaseExtraction(id={self.id}, case_id={self.case_id}, "
            f"rule_name={self.rule_name}, field_value={self.field_value})>"
        )
