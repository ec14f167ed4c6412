from __future__ import annotations
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, ForeignKey, DateTime, JSON, func
from typing import List, Dict, Any

from .authz import Base


class PurchasePreparation(Base):
    """Hand-off record for the procurement subsystem, one per approved request."""
    __tablename__ = 'purchase_preparations'
    STATUS_PENDING_SUPPLIER_ASSIGNMENT = 'pending_supplier_assignment'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # unique: the approval side effect can never create a second preparation
    request_id: Mapped[int] = mapped_column(ForeignKey('approval_requests.id'), unique=True, nullable=False)
    request_domain: Mapped[str] = mapped_column(String(32), nullable=False)
    lines: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=STATUS_PENDING_SUPPLIER_ASSIGNMENT, index=True)
    approved_by: Mapped[int] = mapped_column(Integer, nullable=False)
    approved_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now())
    created_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now())

    def to_json(self):
        return {
            'id': self.id,
            'request_id': self.request_id,
            'request_domain': self.request_domain,
            'lines': self.lines or [],
            'status': self.status,
            'approved_by': self.approved_by,
            'approved_at': self.approved_at.isoformat() if self.approved_at else None,
        }
