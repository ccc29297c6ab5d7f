"""
Tests d'intégration API pour l'authentification 3FA.
Testent POST /api/v1/auth/totp/setup
      POST /api/v1/auth/totp/verify
      POST /api/v1/auth/authenticate
"""

import uuid
from unittest.mock import patch

from app.exceptions import FactorNotConfigured, StorageFailure, UserNotFoundError
from app.schemas.auth import AuthenticationResult, TotpSetupResponse


# --- Helpers ---

def make_setup_response(user_id) -> TotpSetupResponse:
    return TotpSetupResponse(
        user_id=user_id,
        secret="JBSWY3DPEHPK3PXPJBSWY3DPEHPK3PXP",
        provisioning_uri="otpauth://totp/Auto-Bridge:admin%40auto-bridge.ca?secret=JBSWY3DPEHPK3PXPJBSWY3DPEHPK3PXP&issuer=Auto-Bridge",
        qr_code="data:image/png;base64,iVBORw0KGgo=",
    )


def make_device_payload(**kwargs) -> dict:
    return {
        "user_agent": kwargs.get("user_agent", "Firefox/131.0"),
        "screen_resolution": kwargs.get("screen_resolution", "1920x1080"),
        "timezone": kwargs.get("timezone", "America/Toronto"),
        "language": "fr-CA",
        "platform": "Linux x86_64",
        "cookie_enabled": True,
        "do_not_track": None,
        "canvas_fingerprint": "data:image/png;base64,AAAA",
        "webgl_fingerprint": None,
    }


# ============================================================
# POST /api/v1/auth/totp/setup
# ============================================================

def test_setup_totp_succes(client):
    """Setup valide → 201 avec secret, URI et QR code."""
    user_id = uuid.uuid4()
    with patch("app.routers.auth.totp_service.setup_totp") as mock:
        mock.return_value = make_setup_response(user_id)

        response = client.post(
            "/api/v1/auth/totp/setup",
            json={"user_id": str(user_id), "account_label": "admin@auto-bridge.ca"},
        )

    assert response.status_code == 201
    data = response.json()
    assert data["provisioning_uri"].startswith("otpauth://totp/")
    assert data["qr_code"].startswith("data:image/png;base64,")
    mock.assert_called_once()
    assert mock.call_args[0][2] == "admin@auto-bridge.ca"


def test_setup_totp_libelle_vide(client):
    """Libellé composé d'espaces → 422."""
    response = client.post(
        "/api/v1/auth/totp/setup",
        json={"user_id": str(uuid.uuid4()), "account_label": "   "},
    )
    assert response.status_code == 422


def test_setup_totp_utilisateur_introuvable(client):
    user_id = uuid.uuid4()
    with patch("app.routers.auth.totp_service.setup_totp") as mock:
        mock.side_effect = UserNotFoundError(user_id)

        response = client.post(
            "/api/v1/auth/totp/setup",
            json={"user_id": str(user_id), "account_label": "a@b.c"},
        )

    assert response.status_code == 404
    assert "introuvable" in response.json()["detail"]


def test_setup_totp_deja_actif(client):
    with patch("app.routers.auth.totp_service.setup_totp") as mock:
        mock.side_effect = ValueError("Le TOTP est déjà activé pour cet utilisateur.")

        response = client.post(
            "/api/v1/auth/totp/setup",
            json={"user_id": str(uuid.uuid4()), "account_label": "a@b.c"},
        )

    assert response.status_code == 409


def test_setup_totp_store_indisponible(client):
    with patch("app.routers.auth.totp_service.setup_totp") as mock:
        mock.side_effect = StorageFailure("timeout")

        response = client.post(
            "/api/v1/auth/totp/setup",
            json={"user_id": str(uuid.uuid4()), "account_label": "a@b.c"},
        )

    assert response.status_code == 503


# ============================================================
# POST /api/v1/auth/totp/verify
# ============================================================

def test_verify_totp_succes(client):
    user_id = uuid.uuid4()
    with patch("app.routers.auth.totp_service.verify_and_enable_totp", return_value=True):
        response = client.post(
            "/api/v1/auth/totp/verify",
            json={"user_id": str(user_id), "code": "123456"},
        )

    assert response.status_code == 200
    assert response.json() == {"user_id": str(user_id), "totp_verified": True}


def test_verify_totp_code_faux(client):
    with patch("app.routers.auth.totp_service.verify_and_enable_totp", return_value=False):
        response = client.post(
            "/api/v1/auth/totp/verify",
            json={"user_id": str(uuid.uuid4()), "code": "000000"},
        )

    assert response.status_code == 400


def test_verify_totp_non_configure(client):
    """Aucun secret généré → 409 (distinct d'un code faux)."""
    with patch("app.routers.auth.totp_service.verify_and_enable_totp") as mock:
        mock.side_effect = FactorNotConfigured("TOTP non configuré pour cet utilisateur.")

        response = client.post(
            "/api/v1/auth/totp/verify",
            json={"user_id": str(uuid.uuid4()), "code": "123456"},
        )

    assert response.status_code == 409


# ============================================================
# POST /api/v1/auth/authenticate
# ============================================================

def test_authenticate_admis(client):
    with patch("app.routers.auth.auth_service.authenticate") as mock:
        mock.return_value = AuthenticationResult(admitted=True, totp_used=True, device_verified=True)

        response = client.post("/api/v1/auth/authenticate", json={
            "user_id": str(uuid.uuid4()),
            "totp_code": "123456",
            "device": make_device_payload(),
        })

    assert response.status_code == 200
    assert response.json()["admitted"] is True


def test_authenticate_code_faux_401(client):
    with patch("app.routers.auth.auth_service.authenticate") as mock:
        mock.return_value = AuthenticationResult(admitted=False, reason="InvalidCode", totp_used=True)

        response = client.post("/api/v1/auth/authenticate", json={
            "user_id": str(uuid.uuid4()),
            "totp_code": "000000",
            "device": make_device_payload(),
        })

    assert response.status_code == 401
    assert response.json()["reason"] == "InvalidCode"


def test_authenticate_verrouille_423(client):
    with patch("app.routers.auth.auth_service.authenticate") as mock:
        mock.return_value = AuthenticationResult(
            admitted=False, reason="AccountLocked", locked_remaining_minutes=17,
        )

        response = client.post("/api/v1/auth/authenticate", json={"user_id": str(uuid.uuid4())})

    assert response.status_code == 423
    assert response.json()["locked_remaining_minutes"] == 17


def test_authenticate_store_indisponible_503(client):
    with patch("app.routers.auth.auth_service.authenticate") as mock:
        mock.return_value = AuthenticationResult(admitted=False, reason="StorageFailure")

        response = client.post("/api/v1/auth/authenticate", json={"user_id": str(uuid.uuid4())})

    assert response.status_code == 503
    assert response.json()["admitted"] is False


def test_authenticate_utilisateur_introuvable(client):
    user_id = uuid.uuid4()
    with patch("app.routers.auth.auth_service.authenticate") as mock:
        mock.side_effect = UserNotFoundError(user_id)

        response = client.post("/api/v1/auth/authenticate", json={"user_id": str(user_id)})

    assert response.status_code == 404


def test_authenticate_user_agent_et_ip_depuis_la_requete(client):
    """Signal user_agent absent → header User-Agent ; IP depuis X-Forwarded-For."""
    with patch("app.routers.auth.auth_service.authenticate") as mock:
        mock.return_value = AuthenticationResult(admitted=True)

        client.post(
            "/api/v1/auth/authenticate",
            json={"user_id": str(uuid.uuid4()), "device": {"screen_resolution": "1280x800"}},
            headers={"User-Agent": "AutoBridgeCLI/1.0", "X-Forwarded-For": "203.0.113.7, 10.0.0.1"},
        )

    args = mock.call_args[0]
    assert args[3].user_agent == "AutoBridgeCLI/1.0"
    assert args[3].screen_resolution == "1280x800"
    assert args[4] == "203.0.113.7"


def test_authenticate_user_id_invalide(client):
    response = client.post("/api/v1/auth/authenticate", json={"user_id": "pas-un-uuid"})
    assert response.status_code == 422


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
