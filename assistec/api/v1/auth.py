from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from assistec.core.security import create_access_token, get_current_user, get_user_functions, verify_password
from assistec.db import models
from assistec.db.session import get_db
from assistec.services import audit
from assistec.services.audit import Actor, ClientInfo

router = APIRouter(tags=["Auth"])


class LoginRequest(BaseModel):
    usuario: str
    senha: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str
    role: str


def _authenticate(db: Session, username: str, password: str, client: ClientInfo) -> models.User:
    normalized = username.strip().lower()
    query = db.query(models.User).outerjoin(models.Tenant, models.Tenant.id == models.User.tenant_id)
    query = query.filter(or_(models.User.tenant_id.is_(None), models.Tenant.status.in_(["ATIVO", "TRIAL"])))
    query = query.filter(
        or_(
            func.lower(models.User.login) == normalized,
            func.lower(models.User.email) == normalized,
        )
    )
    user = query.order_by(models.User.created_at.desc()).first()
    if user and not verify_password(password, user.password_hash):
        audit.record(
            db,
            tenant_id=user.tenant_id,
            action="LOGIN_FAILED",
            entity_type="USER",
            entity_id=user.id,
            actor=Actor.from_user(user),
            details="Senha invalida",
            client=client,
        )
        db.commit()
        user = None
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Usuario ou senha invalidos"
        )
    if user.status != "active":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Usuario inativo")
    audit.record(
        db,
        tenant_id=user.tenant_id,
        action="LOGIN",
        entity_type="USER",
        entity_id=user.id,
        actor=Actor.from_user(user),
        details="Login realizado",
        client=client,
    )
    db.commit()
    return user


def _issue(user: models.User) -> dict:
    token = create_access_token(
        {
            "sub": user.id,
            "tenant_id": user.tenant_id,
            "role": user.role,
            "functions": sorted(get_user_functions(user)),
        }
    )
    return {"access_token": token, "token_type": "bearer", "role": user.role}


@router.post("/auth/login", response_model=LoginResponse, summary="Login JSON (frontend)")
def login(payload: LoginRequest, request: Request, db: Session = Depends(get_db)):
    return _issue(_authenticate(db, payload.usuario, payload.senha, ClientInfo.from_request(request)))


@router.post(
    "/auth/token",
    response_model=LoginResponse,
    summary="Login para Swagger (OAuth2PasswordBearer)",
)
def login_swagger(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
):
    client = ClientInfo.from_request(request)
    return _issue(_authenticate(db, form_data.username, form_data.password, client))


@router.get("/auth/me")
def me(current_user: models.User = Depends(get_current_user)):
    return {
        "id": current_user.id,
        "name": current_user.name,
        "tenant_id": current_user.tenant_id,
        "role": current_user.role,
        "functions": sorted(get_user_functions(current_user)),
    }
