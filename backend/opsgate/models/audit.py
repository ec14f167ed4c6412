from __future__ import annotations
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, JSON, DateTime, func

from .authz import Base  # reuse same metadata

class AuditLog(Base):
    """Administrative actions (PCS edits, role changes). Request decisions live in request_audit_entries."""
    __tablename__ = 'audit_logs'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    actor_user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    actor_role: Mapped[str] = mapped_column(String(64), nullable=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    entity: Mapped[str] = mapped_column(String(64), nullable=True)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=True)
    meta: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now())

    def to_json(self):
        return {
            'id': self.id,
            'actor_user_id': self.actor_user_id,
            'actor_role': self.actor_role,
            'action': self.action,
            'entity': self.entity,
            'entity_id': self.entity_id,
            'meta': self.meta or {},
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
