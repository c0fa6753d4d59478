"""Cross-cutting utilities (logging) for the AuditSync consumer."""
