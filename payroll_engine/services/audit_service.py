"""
Payroll Engine - Audit Service

Field-change audit trail for status transitions and loan balance changes.
Audit persistence is owned elsewhere; this service writes structured log
records and never lets an audit failure reach the caller's transaction.
"""

import logging
from typing import Any, Optional

from payroll_engine.services.interfaces import AuditSink

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("payroll_engine.audit")


class LoggingAuditSink:
    """Audit sink that emits one log record per field change."""

    def record_field_change(
        self,
        entity_type: str,
        entity_id: Any,
        field: str,
        old: Any,
        new: Any,
        actor: Optional[Any] = None,
    ) -> None:
        audit_logger.info(
            f"{entity_type}[{entity_id}].{field}: {old} -> {new}",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "field": field,
                "old_value": None if old is None else str(old),
                "new_value": None if new is None else str(new),
                "actor": None if actor is None else str(actor),
            },
        )


def record_field_change(
    sink: Optional[AuditSink],
    entity_type: str,
    entity_id: Any,
    field: str,
    old: Any,
    new: Any,
    actor: Optional[Any] = None,
) -> None:
    """Best-effort audit call: sink errors are logged and dropped."""
    if sink is None:
        return
    try:
        sink.record_field_change(entity_type, entity_id, field, old, new, actor)
    except Exception as e:
        logger.warning(f"Audit sink failed for {entity_type}[{entity_id}].{field}: {e}")
