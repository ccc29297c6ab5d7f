"""
Modèle SQLAlchemy du journal d'audit des connexions.
Append-only : une ligne par tentative, jamais modifiée ni supprimée.
"""

import uuid
from sqlalchemy import Boolean, Column, DateTime, Index, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from app.database import Base


class LoginAudit(Base):
    """Trace d'une tentative d'authentification (succès ou échec)."""
    __tablename__ = "login_audit"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # Pas de FK : l'audit survit à la suppression du compte et trace aussi les ids inconnus
    user_id = Column(UUID(as_uuid=True), nullable=True)
    login_time = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    device_fingerprint = Column(String(128), nullable=True)
    success = Column(Boolean, nullable=False)
    failure_reason = Column(String(50), nullable=True)  # AccountLocked, InvalidCode, UntrustedDevice, ...
    totp_used = Column(Boolean, nullable=False, default=False)
    device_verified = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("idx_login_audit_user_time", "user_id", "login_time"),
    )
