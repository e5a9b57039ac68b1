"""Audit log model for tracking billing lifecycle events."""

from typing import Any

from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column

from rentbill.models import Base, BaseModel


class AuditLog(Base, BaseModel):
    """Audit log entry for billing actions.

    Records who (actor_id) did what (action) to which entity (entity_type, entity_id)
    and optional field snapshots (changes).
    """

    __tablename__ = "audit_logs"

    entity_type: Mapped[str] = mapped_column(index=False)
    """Entity type being audited: "invoice", "rent_schedule", "contract"."""

    entity_id: Mapped[int] = mapped_column(index=False)
    """Primary key of the entity being audited."""

    action: Mapped[str] = mapped_column(index=False)
    """Action performed: "create", "generate_schedules", "link_invoice", etc."""

    actor_id: Mapped[int | None] = mapped_column(nullable=True, index=False)
    """User (operator) who performed the action. None for the automated scan."""

    changes: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True, index=False)
    """Optional JSON snapshot: {"period": "2025-02", "total_amount": "5070000.00"}."""

    def __repr__(self) -> str:
        return (
            f"<AuditLog(id={self.id}, entity_type={self.entity_type}, entity_id={self.entity_id}, "
            f"action={self.action}, actor_id={self.actor_id}, created_at={self.created_at})>"
        )


__all__ = ["AuditLog"]
