from __future__ import annotations
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, ForeignKey, DateTime, JSON, Text, func
from typing import Optional, List, Dict, Any

from .authz import Base


class ApprovalRequest(Base):
    """Cross-department request moving through the approval gate.

    Single-table inheritance: the concrete domains below only differ in their
    polymorphic identity and their transition table (see services.workflow).
    """
    __tablename__ = 'approval_requests'
    # Status constants
    STATUS_PENDING_HO = 'pending_ho'
    STATUS_FORWARDED_TO_MD = 'forwarded_to_md'
    STATUS_PENDING = 'pending'
    STATUS_APPROVED = 'approved'
    STATUS_REJECTED = 'rejected'
    TERMINAL_STATUSES = (STATUS_APPROVED, STATUS_REJECTED)
    ALL_STATUSES = (STATUS_PENDING_HO, STATUS_FORWARDED_TO_MD, STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED)

    PRIORITIES = ('normal', 'high', 'urgent')

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    domain: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    items: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    requested_by: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False, index=True)
    requested_by_name: Mapped[str] = mapped_column(String(128), nullable=False)
    requested_by_role: Mapped[str] = mapped_column(String(64), nullable=False)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default='normal')
    notes: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    audit = relationship(
        'RequestAuditEntry',
        back_populates='request',
        order_by='RequestAuditEntry.id',
        cascade='all, delete-orphan',
    )

    __mapper_args__ = {'polymorphic_on': 'domain'}

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    def to_json(self, include_audit: bool = False):
        out = {
            'id': self.id,
            'domain': self.domain,
            'status': self.status,
            'version': self.version,
            'items': self.items or [],
            'priority': self.priority,
            'notes': self.notes,
            'requested_by': self.requested_by,
            'requested_by_name': self.requested_by_name,
            'requested_by_role': self.requested_by_role,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_audit:
            out['audit'] = [a.to_json() for a in self.audit]
        return out


class MaterialRequest(ApprovalRequest):
    __mapper_args__ = {'polymorphic_identity': 'material'}


class PackingMaterialRequest(ApprovalRequest):
    __mapper_args__ = {'polymorphic_identity': 'packing_material'}


class DistributorRequest(ApprovalRequest):
    __mapper_args__ = {'polymorphic_identity': 'distributor'}


REQUEST_CLASSES = {
    'material': MaterialRequest,
    'packing_material': PackingMaterialRequest,
    'distributor': DistributorRequest,
}


class RequestAuditEntry(Base):
    """Append-only decision trail for a request."""
    __tablename__ = 'request_audit_entries'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    request_id: Mapped[int] = mapped_column(ForeignKey('approval_requests.id', ondelete='CASCADE'), nullable=False, index=True)
    actor_id: Mapped[int] = mapped_column(Integer, nullable=False)
    actor_role: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    from_status: Mapped[Optional[str]] = mapped_column(String(32))
    to_status: Mapped[str] = mapped_column(String(32), nullable=False)
    comments: Mapped[Optional[str]] = mapped_column(Text)
    reason: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now())

    request = relationship('ApprovalRequest', back_populates='audit')

    def to_json(self):
        return {
            'actor_id': self.actor_id,
            'actor_role': self.actor_role,
            'action': self.action,
            'from_status': self.from_status,
            'to_status': self.to_status,
            'comments': self.comments,
            'reason': self.reason,
            'timestamp': self.created_at.isoformat() if self.created_at else None,
        }
