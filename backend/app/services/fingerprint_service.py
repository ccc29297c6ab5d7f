"""
Générateur d'empreinte d'appareil.

Les signaux bruts (navigateur ou CLI) ne sont jamais persistés : seul le
hash SHA-256 de leur représentation canonique l'est. Un signal absent est
remplacé par "unknown", la génération ne lève jamais d'exception.
"""

import hashlib
import json
from typing import Optional

from app.schemas.auth import DeviceFingerprint, DeviceSignals

UNKNOWN = "unknown"

# Ordre figé : fait partie du format du hash
SIGNAL_FIELDS = (
    "user_agent",
    "screen_resolution",
    "timezone",
    "language",
    "platform",
    "cookie_enabled",
    "do_not_track",
    "canvas_fingerprint",
    "webgl_fingerprint",
)


def _normalize(value) -> str:
    if value is None:
        return UNKNOWN
    if isinstance(value, bool):
        return "true" if value else "false"
    text = str(value).strip()
    return text or UNKNOWN


def hash_signals(values: dict) -> str:
    canonical = json.dumps(
        [[name, values[name]] for name in SIGNAL_FIELDS],
        ensure_ascii=False,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def generate_fingerprint(signals: Optional[DeviceSignals] = None) -> DeviceFingerprint:
    """Calcule l'empreinte (signaux normalisés + hash) de l'environnement client."""
    signals = signals or DeviceSignals()
    values = {name: _normalize(getattr(signals, name, None)) for name in SIGNAL_FIELDS}
    return DeviceFingerprint(**values, hash=hash_signals(values))
