"""
Modèle SQLAlchemy pour les utilisateurs admin.
Seuls les champs de sécurité sont gérés ici ; le mot de passe et la session
relèvent du fournisseur d'identité.
"""

import uuid
from sqlalchemy import BigInteger, Boolean, Column, DateTime, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from app.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False)
    role = Column(String(50), nullable=False, default="admin")

    # Facteur 2 : TOTP. totp_verified ⇒ totp_enabled ⇒ totp_secret présent
    totp_secret = Column(String(100), nullable=True)
    totp_enabled = Column(Boolean, nullable=False, default=False)
    totp_verified = Column(Boolean, nullable=False, default=False)
    totp_last_step = Column(BigInteger, nullable=True)   # Dernier pas accepté, strictement croissant (anti-rejeu)

    # Facteur 3 : appareil de confiance (hash uniquement, jamais les signaux bruts)
    device_fingerprint = Column(String(128), nullable=True)
    last_login_device = Column(Text, nullable=True)   # User-agent du dernier appareil approuvé
    last_login_ip = Column(String(64), nullable=True)

    # Verrouillage : locked_until dans le passé ≡ NULL (expiration paresseuse)
    login_attempts = Column(Integer, nullable=False, default=0)
    locked_until = Column(DateTime(timezone=True), nullable=True)

    last_login = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
