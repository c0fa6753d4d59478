"""
Domain types shared by the ingestion pipeline.

This module provides:
- AuditEvent, one audited database action decoded from the stream
- ExtractionRule, a read-only regex rule owned by a target
- ExtractedValue, one (rule, matched text) pair for one event
- SourceField, the fixed mapping from symbolic rule field names to
  AuditEvent attributes
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Set

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditEvent:
    """One audited database action.

    ``id`` is stable per logical action: redelivery of the same action
    always yields the same id.
    """
    id: str
    target: str = ""
    session_id: int = 0
    entry_id: int = 0
    statement: int = 0
    db_user: str = ""
    user_host: str = ""
    terminal: str = ""
    action: int = 0
    return_code: int = 0
    owner: str = ""
    name: str = ""
    auth_privileges: str = ""
    auth_grantee: str = ""
    new_owner: str = ""
    new_name: str = ""
    os_user: str = ""
    privilege_used: Optional[str] = None
    timestamp: Optional[datetime] = None
    bind_variables: str = ""
    sql_text: str = ""
    produced_at: Optional[datetime] = None

    @staticmethod
    def derive_id(session_id: int, entry_id: int, statement: int) -> str:
        """Build the deterministic event id used when the source omits one."""
        return f"{session_id}_{entry_id}_{statement}"


@dataclass(frozen=True)
class ExtractionRule:
    """A regex-based field extraction definition owned by a target."""
    id: int
    target_id: int
    rule_name: str
    source_field: str
    regex_pattern: str
    target_name: str = ""
    is_required: bool = False
    is_active: bool = True
    rule_order: int = 0


@dataclass(frozen=True)
class ExtractedValue:
    """One matched value, carrying the rule metadata needed to store it."""
    rule_id: int
    rule_name: str
    regex_pattern: str
    source_field: str
    value: str


class SourceField(str, Enum):
    """AuditEvent attributes that rules may read from."""
    SQL_TEXT = "sql_text"
    BIND_VARIABLES = "bind_variables"
    OWNER = "owner"
    NAME = "name"
    DB_USER = "db_user"
    USER_HOST = "user_host"
    TERMINAL = "terminal"
    OS_USER = "os_user"
    TARGET = "target"
    AUTH_PRIVILEGES = "auth_privileges"
    AUTH_GRANTEE = "auth_grantee"
    NEW_OWNER = "new_owner"
    NEW_NAME = "new_name"
    PRIVILEGE_USED = "privilege_used"

    @classmethod
    def lookup(cls, name: Optional[str]) -> Optional["SourceField"]:
        """
        Resolve a symbolic rule field name (case-insensitive).

        Args:
            name: Field name as stored on the rule, e.g. ``"SqlText"``

        Returns:
            The matching SourceField, or None for unknown names. Each
            unknown name is logged once per process.
        """
        key = (name or "").strip().lower()
        field = _FIELD_NAMES.get(key)
        if field is None:
            _warn_unknown_field(key)
        return field

    def read(self, event: AuditEvent) -> Optional[str]:
        """Return this field's value from an event."""
        return getattr(event, self.value)


_FIELD_NAMES = {
    "text": SourceField.SQL_TEXT,
    "sqltext": SourceField.SQL_TEXT,
    "bindvariables": SourceField.BIND_VARIABLES,
    "owner": SourceField.OWNER,
    "name": SourceField.NAME,
    "dbuser": SourceField.DB_USER,
    "userhost": SourceField.USER_HOST,
    "terminal": SourceField.TERMINAL,
    "osuser": SourceField.OS_USER,
    "target": SourceField.TARGET,
    "authprivileges": SourceField.AUTH_PRIVILEGES,
    "authgrantee": SourceField.AUTH_GRANTEE,
    "newowner": SourceField.NEW_OWNER,
    "newname": SourceField.NEW_NAME,
    "privilegeused": SourceField.PRIVILEGE_USED,
}

_unknown_fields: Set[str] = set()
_unknown_fields_lock = threading.Lock()


def _warn_unknown_field(key: str) -> None:
    with _unknown_fields_lock:
        if key in _unknown_fields:
            return
        _unknown_fields.add(key)
    logger.warning(f"Unknown rule source field '{key}', rules using it never match")
