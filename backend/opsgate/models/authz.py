from __future__ import annotations
from sqlalchemy.orm import declarative_base, relationship, Mapped, mapped_column
from sqlalchemy import String, Integer, Boolean, ForeignKey, JSON, DateTime, func
from typing import Optional, Dict

Base = declarative_base()

# --- Identity ---
class User(Base):
    """Principal as known to the identity provider (password login)."""
    __tablename__ = 'users'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    role_record = relationship('RoleRecord', back_populates='user', uselist=False, cascade='all, delete-orphan')
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def set_password(self, raw: str):
        from werkzeug.security import generate_password_hash
        self.password_hash = generate_password_hash(raw)

    def verify_password(self, raw: str) -> bool:
        from werkzeug.security import check_password_hash
        return check_password_hash(self.password_hash, raw)

    def to_json(self):
        out = {'id': self.id, 'name': self.name, 'email': self.email, 'is_active': self.is_active}
        if self.role_record is not None:
            out.update(self.role_record.to_json())
        return out


class RoleRecord(Base):
    __tablename__ = 'role_records'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), unique=True, nullable=False)
    role: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    department: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default='active')
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    user = relationship('User', back_populates='role_record')
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def to_json(self):
        return {'role': self.role, 'department': self.department, 'status': self.status, 'name': self.name}


# --- Permission Control System ---
class PermissionEntry(Base):
    """One PCS record per principal. pages maps encoded page keys to granted flags."""
    __tablename__ = 'pcs_entries'
    # Primary key on user_id is what makes concurrent first creation race-safe
    user_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    pages: Mapped[Dict[str, bool]] = mapped_column(JSON, nullable=False, default=dict)
    role: Mapped[Optional[str]] = mapped_column(String(64))
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    note: Mapped[Optional[str]] = mapped_column(String(255))
    initialized_by: Mapped[Optional[str]] = mapped_column(String(64))
    updated_by: Mapped[Optional[str]] = mapped_column(String(64))
    created_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
