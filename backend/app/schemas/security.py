"""
Schémas Pydantic pour l'état de sécurité des comptes, les réglages
par utilisateur et le journal d'audit.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from app.schemas.auth import DeviceSignals


class UserSecurityRecord(BaseModel):
    """Instantané des champs de sécurité d'un utilisateur (lu depuis users)."""
    id: uuid.UUID
    totp_secret: Optional[str] = None
    totp_enabled: bool = False
    totp_verified: bool = False
    totp_last_step: Optional[int] = None
    device_fingerprint: Optional[str] = None   # Hash de l'appareil de confiance
    last_login_device: Optional[str] = None
    login_attempts: int = 0
    locked_until: Optional[datetime] = None
    last_login: Optional[datetime] = None

    model_config = {"from_attributes": True}


class LockoutPolicy(BaseModel):
    max_attempts: int = Field(default=5, ge=1)
    lockout_minutes: int = Field(default=30, ge=1)


class SecurityPolicy(BaseModel):
    """Politique effective d'un utilisateur : réglages perso sinon valeurs globales."""
    lockout: LockoutPolicy
    totp_required: bool = False
    device_verification_required: bool = False
    device_retrust_on_success: bool = False


class AuditLogEntry(BaseModel):
    """Entrée à ajouter au journal d'audit (une par tentative)."""
    user_id: Optional[uuid.UUID] = None
    timestamp: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    device_fingerprint: Optional[str] = None
    success: bool
    failure_reason: Optional[str] = None
    totp_used: bool = False
    device_verified: bool = False


class LoginAuditResponse(BaseModel):
    id: uuid.UUID
    user_id: Optional[uuid.UUID]
    login_time: datetime
    ip_address: Optional[str]
    user_agent: Optional[str]
    device_fingerprint: Optional[str]
    success: bool
    failure_reason: Optional[str]
    totp_used: bool
    device_verified: bool

    model_config = {"from_attributes": True}


class SecuritySettingsUpdate(BaseModel):
    """Champs absents ou null = retour à la valeur globale."""
    totp_required: Optional[bool] = None
    device_verification_required: Optional[bool] = None
    max_login_attempts: Optional[int] = Field(default=None, ge=1, le=100)
    lockout_duration_minutes: Optional[int] = Field(default=None, ge=1, le=24 * 60)


class SecuritySettingsResponse(BaseModel):
    """Réglages effectifs (valeurs globales appliquées)."""
    user_id: uuid.UUID
    security_level: str   # basic, 2fa, 3fa
    totp_required: bool
    device_verification_required: bool
    max_login_attempts: int
    lockout_duration_minutes: int


class SecurityStatus(BaseModel):
    user_id: uuid.UUID
    totp_enabled: bool
    totp_verified: bool
    device_trusted: bool
    last_login_device: Optional[str]
    login_attempts: int
    locked: bool
    locked_until: Optional[datetime]
    remaining_minutes: int
    last_login: Optional[datetime]
    settings: SecuritySettingsResponse


class SecurityResetRequest(BaseModel):
    """Code TOTP exigé si le facteur est actif."""
    totp_code: Optional[str] = None


class DeviceRetrustRequest(BaseModel):
    totp_code: Optional[str] = None
    device: DeviceSignals = DeviceSignals()


class DeviceRetrustResponse(BaseModel):
    user_id: uuid.UUID
    device_fingerprint: str


class AuditListResponse(BaseModel):
    user_id: uuid.UUID
    entries: List[LoginAuditResponse]
