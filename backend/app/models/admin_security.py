"""
Modèle SQLAlchemy des réglages de sécurité par utilisateur.
Chaque colonne NULL signifie « valeur globale de app.config ».
"""

import uuid
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, func
from sqlalchemy.dialects.postgresql import UUID

from app.database import Base


class AdminSecurity(Base):
    __tablename__ = "admin_security"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    totp_required = Column(Boolean, nullable=True)
    device_verification_required = Column(Boolean, nullable=True)
    max_login_attempts = Column(Integer, nullable=True)
    lockout_duration_minutes = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
