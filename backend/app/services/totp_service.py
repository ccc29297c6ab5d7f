"""
Service TOTP (facteur 2).

- Génération du secret partagé + URI otpauth:// + QR code
- Vérification d'un code sur une fenêtre bornée de ±1 pas (30 s),
  chaque pas n'étant accepté qu'une fois par utilisateur
- Mise en place (SetupTOTP) et activation après preuve de possession
  (VerifyAndEnableTOTP)
"""

import base64
import io
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

import pyotp
import qrcode
from sqlalchemy.orm import Session

from app.config import settings
from app.exceptions import FactorNotConfigured
from app.schemas.auth import TotpSecret, TotpSetupResponse
from app.services import security_store

logger = logging.getLogger(__name__)

# Tolérance d'horloge : pas courant, pas précédent et pas suivant
VALID_WINDOW = 1


def generate_secret(user_id: uuid.UUID, account_label: str) -> TotpSecret:
    """Nouveau secret base32 (160 bits) et son URI de provisionnement. Aucune écriture."""
    secret = pyotp.random_base32()
    uri = pyotp.TOTP(secret).provisioning_uri(name=account_label, issuer_name=settings.TOTP_ISSUER)
    return TotpSecret(secret=secret, provisioning_uri=uri)


def build_qr_data_url(provisioning_uri: str) -> str:
    """Encode l'URI otpauth:// en QR code PNG, renvoyé sous forme de data URL."""
    qr = qrcode.QRCode(version=1, box_size=10, border=4)
    qr.add_data(provisioning_uri)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def match_step(secret: str, code: str, for_time: Optional[datetime] = None) -> Optional[int]:
    """
    Retourne le pas (timecode) auquel correspond le code dans la fenêtre
    ±VALID_WINDOW, ou None. Comparaison à temps constant
    (pyotp.utils.strings_equal) ; None, sans lever, pour toute entrée mal formée.
    """
    if not isinstance(secret, str) or not isinstance(code, str):
        return None
    code = code.replace(" ", "").strip()
    if not code.isdigit():
        return None
    try:
        totp = pyotp.TOTP(secret)
        current = totp.timecode(for_time or datetime.now(timezone.utc))
        for step in range(current - VALID_WINDOW, current + VALID_WINDOW + 1):
            if pyotp.utils.strings_equal(code, totp.generate_otp(step)):
                return step
    except (ValueError, TypeError):
        # Secret non base32
        return None
    return None


def verify_code(secret: str, code: str, for_time: Optional[datetime] = None) -> bool:
    """Vérifie un code à 6 chiffres contre le secret, sans contrôle de rejeu."""
    return match_step(secret, code, for_time) is not None


def verify_user_totp(
    db: Session,
    user_id: uuid.UUID,
    code: Optional[str],
    now: Optional[datetime] = None,
) -> bool:
    """
    Vérifie le code d'un utilisateur contre son secret stocké.
    Un code n'est accepté qu'une fois : son pas doit être strictement
    postérieur au dernier pas accepté (totp_last_step).
    Lève FactorNotConfigured si aucun secret n'a été généré.
    """
    record = security_store.get_security_record(db, user_id)
    if not record.totp_secret:
        raise FactorNotConfigured("TOTP non configuré pour cet utilisateur.")
    step = match_step(record.totp_secret, code or "", now)
    if step is None:
        return False
    if not security_store.claim_totp_step(db, user_id, step):
        logger.warning("Code TOTP rejoué refusé pour l'utilisateur %s", user_id)
        return False
    return True


def setup_totp(db: Session, user_id: uuid.UUID, account_label: str) -> TotpSetupResponse:
    """
    Génère et stocke un nouveau secret (totp_enabled=True, totp_verified=False).

    Lève ValueError si le TOTP est déjà actif : remplacer le secret
    désactiverait silencieusement le facteur, il faut d'abord une
    réinitialisation de sécurité.
    """
    record = security_store.get_security_record(db, user_id)
    if record.totp_verified:
        raise ValueError("Le TOTP est déjà activé pour cet utilisateur.")

    generated = generate_secret(user_id, account_label)
    security_store.update_security_fields(
        db, user_id,
        totp_secret=generated.secret,
        totp_enabled=True,
        totp_verified=False,
        totp_last_step=None,
    )
    logger.info("Secret TOTP généré pour l'utilisateur %s", user_id)

    return TotpSetupResponse(
        user_id=user_id,
        secret=generated.secret,
        provisioning_uri=generated.provisioning_uri,
        qr_code=build_qr_data_url(generated.provisioning_uri),
    )


def verify_and_enable_totp(db: Session, user_id: uuid.UUID, code: str) -> bool:
    """
    Active le facteur TOTP si le code prouve la possession du secret.
    Retourne False si le code est faux ; lève FactorNotConfigured sans secret.
    """
    if not verify_user_totp(db, user_id, code):
        logger.warning("Code d'activation TOTP refusé pour l'utilisateur %s", user_id)
        return False

    security_store.update_security_fields(db, user_id, totp_enabled=True, totp_verified=True)
    logger.info("TOTP activé pour l'utilisateur %s", user_id)
    return True
