"""
Planificateur APScheduler : nettoyage périodique des verrous expirés.

Le verrouillage fonctionne sans ce job (expiration paresseuse à la lecture) ;
il garde simplement la table users et la page sécurité à jour.
"""

import logging
from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler

from app.config import settings
from app.database import SessionLocal
from app.exceptions import StorageFailure
from app.services import security_store

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def _sweep_expired_lockouts() -> None:
    """Tâche planifiée : efface locked_until et login_attempts des verrous expirés."""
    db = SessionLocal()
    try:
        count = security_store.clear_expired_lockouts(db, datetime.now(timezone.utc))
        if count:
            logger.info("%d verrou(s) expiré(s) nettoyé(s)", count)
    except StorageFailure as exc:
        logger.error("Erreur lors du nettoyage des verrous expirés : %s", exc)
    finally:
        db.close()


def start_scheduler() -> None:
    """Démarre le planificateur en arrière-plan (appelé au démarrage de l'API)."""
    scheduler.add_job(
        _sweep_expired_lockouts,
        trigger="interval",
        minutes=settings.LOCKOUT_SWEEP_INTERVAL_MINUTES,
        id="expired_lockout_sweep",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(
        "Scheduler démarré, nettoyage des verrous toutes les %d min.",
        settings.LOCKOUT_SWEEP_INTERVAL_MINUTES,
    )


def stop_scheduler() -> None:
    """Arrête le planificateur proprement (appelé à l'arrêt de l'API)."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler arrêté.")
