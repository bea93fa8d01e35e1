"""
=============================================================================
DATABASE.PY - Configuración de la Base de Datos
=============================================================================
Este archivo sabe CÓMO conectarse a la base de datos, pero no se conecta
por sí solo: create_app() llama a build_engine() con la URL de Settings
y guarda la fábrica de sesiones en app.state.

En DESARROLLO (tu PC): usa SQLite (un archivo .db)
En PRODUCCIÓN: usa PostgreSQL (la URL viene en DATABASE_URL)
En TESTS: usa SQLite en memoria ("sqlite://")

SQLAlchemy: es una librería que te permite hablar con la base de datos
usando Python en vez de escribir SQL directamente.
"""

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

# ─────────────────────────────────────────────────────────────────────────────
# BASE (Clase base para los modelos)
# ─────────────────────────────────────────────────────────────────────────────
# Todos los modelos (User, Goal, DailyTask...) heredan de esta clase.

Base = declarative_base()


# ─────────────────────────────────────────────────────────────────────────────
# ENGINE Y SESIONES
# ─────────────────────────────────────────────────────────────────────────────

def build_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Crea el engine (el "motor" que ejecuta las consultas SQL).

    connect_args={"check_same_thread": False} → solo para SQLite, que por
    defecto no permite usar la conexión desde varios hilos (FastAPI sí lo hace).
    Una BD SQLite en memoria vive dentro de UNA conexión, así que usamos
    StaticPool para que todas las sesiones compartan esa misma conexión.
    """
    engine_args = {}
    if database_url.startswith("sqlite"):
        engine_args["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            engine_args["poolclass"] = StaticPool

    return create_engine(database_url, echo=echo, **engine_args)


def build_session_factory(engine: Engine) -> sessionmaker:
    """
    Una sesión es una "conversación" con la BD. La fábrica crea sesiones
    nuevas. expire_on_commit=False → los objetos siguen legibles después
    de hacer commit (útil para construir la respuesta).
    """
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine):
    """
    Crea todas las tablas en la BD si no existen.
    Importa models para que todas las clases estén registradas en Base.
    """
    import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_db(request: Request):
    """
    Dependencia de FastAPI: abre una sesión y la cierra al terminar.

    Si el endpoint lanza una excepción antes de hacer commit, al cerrar
    la sesión se descartan todos los cambios pendientes (rollback).
    """
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
