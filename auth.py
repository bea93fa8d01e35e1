"""
=============================================================================
AUTH.PY - Sistema de Autenticación
=============================================================================
Gestiona:
  - Hashing de contraseñas (nunca guardar contraseñas en texto plano)
  - Creación y verificación de tokens JWT
  - Obtener el usuario actual desde un token

La clave y la duración del token vienen de Settings (app.state.settings),
no de variables globales: cada app (producción, tests) firma con la suya.

Flujo JWT:
  1. Usuario envía email + contraseña
  2. Si son correctos, el servidor genera un JWT
  3. El usuario envía ese JWT en cada petición siguiente
  4. El servidor verifica el JWT y sabe quién es el usuario
"""

from datetime import datetime, timedelta
from typing import Optional

import bcrypt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from config import Settings
from database import get_db
from models import User

ALGORITHM = "HS256"


# ─────────────────────────────────────────────────────────────────────────────
# HASHING DE CONTRASEÑAS
# ─────────────────────────────────────────────────────────────────────────────
# bcrypt convierte "mi_contraseña" en algo como "$2b$12$LJ3m5..."
# Es IRREVERSIBLE: no puedes obtener la contraseña original desde el hash.

def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


# ─────────────────────────────────────────────────────────────────────────────
# TOKENS JWT
# ─────────────────────────────────────────────────────────────────────────────

def create_access_token(settings: Settings, user_id: int, email: str) -> str:
    """
    Crea un token JWT con:
      - sub (subject): el ID del usuario
      - email: para referencia
      - exp (expiration): cuándo caduca
    Firmado con settings.secret_key.
    """
    expire = datetime.utcnow() + timedelta(days=settings.access_token_expire_days)
    to_encode = {
        "sub": str(user_id),
        "email": email,
        "exp": expire
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=ALGORITHM)


def decode_token(settings: Settings, token: str) -> Optional[dict]:
    """Si el token es inválido o ha expirado, devuelve None"""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return None


# ─────────────────────────────────────────────────────────────────────────────
# DEPENDENCIA: OBTENER USUARIO ACTUAL
# ─────────────────────────────────────────────────────────────────────────────

security = HTTPBearer(auto_error=False)
# auto_error=False → sin cabecera devolvemos nosotros el 401 (HTTPBearer daría 403)


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    Extrae el usuario del token JWT.

    Uso:
      @router.get("/mis-datos")
      def mis_datos(user: User = Depends(get_current_user)):
          return user.name
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No autenticado",
            headers={"WWW-Authenticate": "Bearer"}
        )

    payload = decode_token(request.app.state.settings, credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token inválido o expirado",
            headers={"WWW-Authenticate": "Bearer"}
        )

    user_id = payload.get("sub")
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token sin identificador de usuario"
        )

    user = db.query(User).filter(User.id == int(user_id)).first()
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Usuario no encontrado"
        )

    # Actualizar última actividad
    user.last_active = datetime.utcnow()
    db.commit()

    return user
