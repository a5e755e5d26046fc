from datetime import datetime, timedelta
from typing import Any, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from assistec.core.config import settings
from assistec.core.constants import FUNCTIONS, PRIVILEGED_ROLES, Role
from assistec.db import models
from assistec.db.session import get_db

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        return False


def get_password_hash(password: str) -> str:
    if not isinstance(password, str):
        raise ValueError("Senha invalida para hash: envie somente a senha em texto do usuario.")
    if len(password.encode("utf-8")) > 72:
        raise ValueError("Senha maior que 72 bytes em UTF-8.")
    return pwd_context.hash(password)


def create_access_token(data: dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(hours=settings.ACCESS_TOKEN_EXPIRE_HOURS))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def get_user_functions(user: models.User) -> set[str]:
    if user.role in PRIVILEGED_ROLES:
        return set(FUNCTIONS)
    return {fn for fn in (user.functions or []) if fn in FUNCTIONS}


def _credentials_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Credenciais invalidas",
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_access_token(token: str) -> dict[str, Any]:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise _credentials_error()
    if not payload.get("sub"):
        raise _credentials_error()
    return payload


def get_current_user(
    token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)
) -> models.User:
    claims = decode_access_token(token)
    tenant_id = claims.get("tenant_id")
    user = db.get(models.User, claims["sub"])
    if user is None or user.tenant_id != tenant_id:
        raise _credentials_error()
    # Only the super-tenant role may carry a token without a tenant.
    if tenant_id is None and user.role != Role.SUPER_ADMIN.value:
        raise _credentials_error()
    if user.status != "active":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Usuario inativo")
    return user


def require_functions(*functions: str):
    def _dependency(user: models.User = Depends(get_current_user)) -> models.User:
        granted = get_user_functions(user)
        if any(fn not in granted for fn in functions):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Permissao negada")
        return user

    return _dependency


def require_any_function(*functions: str):
    def _dependency(user: models.User = Depends(get_current_user)) -> models.User:
        if not get_user_functions(user).intersection(functions):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Permissao negada")
        return user

    return _dependency
