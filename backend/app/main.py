"""
Point d'entrée principal de l'API d'authentification Auto-Bridge (3FA).
Démarrage : uvicorn app.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import app.models  # noqa: F401 : enregistre tous les modèles dans Base.metadata avant les routers
from app.routers import auth, security
from app.scheduler import start_scheduler, stop_scheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Cycle de vie de l'application : démarre et arrête le scheduler APScheduler."""
    start_scheduler()
    yield
    stop_scheduler()


app = FastAPI(
    title="Auto-Bridge Auth API",
    description="Authentification trois facteurs de l'espace admin (TOTP, appareil de confiance, verrouillage)",
    version="0.1.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

# CORS : autorise tous les ports localhost en développement (à restreindre en production).
# La page de connexion admin envoie du JSON : allow_origin_regex couvre aussi le preflight OPTIONS.
app.add_middleware(
    CORSMiddleware,
    allow_origins=[],
    allow_origin_regex=r"https?://(localhost|127\.0\.0\.1)(:\d+)?",
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept"],
)


# Authentification 3FA puis page sécurité du compte
app.include_router(auth.router)
app.include_router(security.router)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Intercepte toutes les exceptions non gérées pour garantir que la réponse 500
    passe bien par CORSMiddleware (qui injecte les headers CORS).
    Sans lui, une erreur du store non convertie remonterait au navigateur sans
    headers CORS et la page de connexion n'afficherait qu'un "Failed to fetch".
    """
    logger.error("Exception non gérée : %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Une erreur interne est survenue."},
    )


@app.get("/api/health", tags=["Santé"])
def health_check():
    """Vérifie que l'API est opérationnelle."""
    return {"status": "ok", "service": "Auto-Bridge Auth API", "version": "0.1.0"}
