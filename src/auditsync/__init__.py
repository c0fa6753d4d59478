"""AuditSync consumer: ingests database audit events, extracts rule values and opens review cases."""

__version__ = "1.0.0"
