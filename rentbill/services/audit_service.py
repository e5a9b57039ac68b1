"""Audit service for logging billing lifecycle events."""

from sqlalchemy.ext.asyncio import AsyncSession

from rentbill.models.audit_log import AuditLog


class AuditService:
    """Service for audit log operations.

    Provides static method to create minimal audit log entries. The entry joins the
    caller's transaction and is committed (or rolled back) with it.
    """

    @staticmethod
    async def log(
        session: AsyncSession,
        entity_type: str,
        entity_id: int,
        action: str,
        actor_id: int | None = None,
        changes: dict | None = None,
    ) -> AuditLog:
        """Create audit log entry (one-liner).

        Args:
            session: Database session
            entity_type: Type of entity ("invoice", "rent_schedule", "contract")
            entity_id: Primary key of the entity
            action: Action performed ("create", "link_invoice", etc.)
            actor_id: Operator who performed the action (None for the automated scan)
            changes: Optional JSON snapshot of changed fields

        Returns:
            Created AuditLog object
        """
        audit = AuditLog(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_id=actor_id,
            changes=changes,
        )
        session.add(audit)
        return audit


__all__ = ["AuditService"]
