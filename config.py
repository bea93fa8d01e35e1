"""
=============================================================================
CONFIG.PY - Configuración de la Aplicación
=============================================================================
Todas las variables de entorno se leen AQUÍ, en un solo sitio.

¿Por qué?
  Antes cada archivo hacía su propio os.getenv(...). Ahora se construye
  un objeto Settings al arrancar y se le pasa a create_app(). Así los
  tests pueden crear una app con su propia configuración (BD en memoria,
  límites distintos...) sin tocar variables de entorno.

Variables:
  DATABASE_URL            → BD (SQLite en local, PostgreSQL en producción)
  SECRET_KEY              → clave para firmar los JWT
  ACCESS_TOKEN_EXPIRE_DAYS→ duración del token
  DEFAULT_PRIMARY_LIMIT   → tareas PRIMARY por día para usuarios nuevos
  AI_DAILY_LIMIT          → peticiones de IA por usuario y día
  OPENAI_API_KEY          → si no existe, la IA queda desactivada
  AI_MODEL                → modelo a usar para las sugerencias
  DEFAULT_TIMEZONE        → zona horaria por defecto de usuarios nuevos
  LOG_LEVEL               → INFO, DEBUG, WARNING...
"""

import os
from typing import Optional

from pydantic import BaseModel, Field


def normalize_database_url(url: str) -> str:
    """
    Railway/Heroku dan la URL con "postgres://" pero SQLAlchemy necesita
    "postgresql://". Además usamos psycopg (v3) como driver.
    """
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


class Settings(BaseModel):
    """Configuración completa de la aplicación"""
    database_url: str = "sqlite:///./cascada.db"
    secret_key: str = "cascada-dev-secret-key-cambiar-en-produccion"
    access_token_expire_days: int = Field(default=30, ge=1)

    default_primary_limit: int = Field(default=3, ge=1, le=10)
    # default_primary_limit → cuántas tareas PRIMARY puede tener un día
    # (el MIT siempre es 1 y las SECONDARY no tienen límite)

    ai_daily_limit: int = Field(default=5, ge=0)
    openai_api_key: Optional[str] = None
    ai_model: str = "gpt-4o-mini"

    default_timezone: str = "UTC"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Construye la configuración a partir de las variables de entorno"""
        return cls(
            database_url=normalize_database_url(
                os.getenv("DATABASE_URL", "sqlite:///./cascada.db")
            ),
            secret_key=os.getenv("SECRET_KEY", cls.model_fields["secret_key"].default),
            access_token_expire_days=int(os.getenv("ACCESS_TOKEN_EXPIRE_DAYS", "30")),
            default_primary_limit=int(os.getenv("DEFAULT_PRIMARY_LIMIT", "3")),
            ai_daily_limit=int(os.getenv("AI_DAILY_LIMIT", "5")),
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            ai_model=os.getenv("AI_MODEL", "gpt-4o-mini"),
            default_timezone=os.getenv("DEFAULT_TIMEZONE", "UTC"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
