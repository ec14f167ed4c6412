from __future__ import annotations
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, DateTime, JSON, func
from typing import Optional

from .authz import Base


class Notification(Base):
    __tablename__ = 'notifications'
    STATUS_UNREAD = 'unread'
    STATUS_READ = 'read'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    recipient_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    request_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)
    message: Mapped[str] = mapped_column(String(255), nullable=False)
    data: Mapped[dict] = mapped_column(JSON, default=dict)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_UNREAD, index=True)
    created_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now())
    read_at: Mapped[Optional[str]] = mapped_column(DateTime(timezone=True))

    def to_json(self):
        return {
            'id': self.id,
            'type': self.type,
            'request_id': self.request_id,
            'message': self.message,
            'data': self.data or {},
            'status': self.status,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'read_at': self.read_at.isoformat() if self.read_at else None,
        }
