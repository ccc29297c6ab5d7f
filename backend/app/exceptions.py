"""
Taxonomie des erreurs d'authentification 3FA.

Chaque erreur porte un `reason` stable, repris tel quel dans les réponses
API et dans le journal d'audit (login_audit.failure_reason).
"""

from typing import Optional


class AuthError(Exception):
    """Base de toutes les erreurs du cœur 3FA."""
    reason = "AuthError"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.reason)


class FactorNotConfigured(AuthError):
    """TOTP demandé alors qu'aucun secret n'a jamais été configuré."""
    reason = "FactorNotConfigured"


class InvalidCode(AuthError):
    """Code TOTP absent, erroné ou expiré."""
    reason = "InvalidCode"


class UntrustedDevice(AuthError):
    """Empreinte d'appareil différente de l'appareil de confiance (politique obligatoire)."""
    reason = "UntrustedDevice"


class AccountLocked(AuthError):
    """Verrouillage actif : toute tentative est refusée sans être comptée."""
    reason = "AccountLocked"

    def __init__(self, remaining_minutes: int):
        self.remaining_minutes = remaining_minutes
        super().__init__(f"Compte verrouillé. Réessayez dans {remaining_minutes} min.")


class StorageFailure(AuthError):
    """Store injoignable, timeout ou écriture échouée. Toujours fail-closed."""
    reason = "StorageFailure"


class AuditFailure(AuthError):
    """Écriture du journal d'audit échouée. Mode dégradé, jamais bloquant."""
    reason = "AuditFailure"


class UserNotFoundError(ValueError):
    """Utilisateur absent du store (mappé en 404 par les routers)."""
    reason = "UserNotFound"

    def __init__(self, user_id):
        super().__init__(f"Utilisateur {user_id} introuvable.")
