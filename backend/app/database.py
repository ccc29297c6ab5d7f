"""
Configuration de la connexion à la base de données PostgreSQL.
Chaque appel au store est borné dans le temps : un timeout remonte en
SQLAlchemyError, converti en StorageFailure par le service security_store.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker

from app.config import settings


def _connect_args() -> dict:
    """
    Bornes côté pilote psycopg2 : ouverture de connexion (connect_timeout)
    et durée de chaque requête (statement_timeout). PostgreSQL uniquement.
    """
    if settings.DATABASE_URL.startswith("postgresql"):
        return {
            "connect_timeout": settings.DB_CONNECT_TIMEOUT_SECONDS,
            "options": f"-c statement_timeout={settings.DB_STATEMENT_TIMEOUT_MS}",
        }
    return {}


engine = create_engine(
    settings.DATABASE_URL,
    pool_timeout=settings.DB_POOL_TIMEOUT_SECONDS,
    pool_pre_ping=True,
    connect_args=_connect_args(),
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dépendance FastAPI : fournit une session BDD et la ferme après usage."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
