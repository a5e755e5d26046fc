import os

from assistec.core.constants import FUNCTIONS, Role
from assistec.core.security import get_password_hash
from assistec.db import models
from assistec.db.session import SessionLocal, engine


def main() -> None:
    login = os.getenv("ADMIN_BOOTSTRAP_LOGIN")
    password = os.getenv("ADMIN_BOOTSTRAP_PASSWORD")
    tenant_name = os.getenv("ADMIN_BOOTSTRAP_TENANT")
    if not login or not password:
        raise SystemExit("ADMIN_BOOTSTRAP_LOGIN / ADMIN_BOOTSTRAP_PASSWORD nao definidos.")
    login = login.strip().lower()

    models.Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        tenant = None
        if tenant_name:
            tenant = db.query(models.Tenant).filter(models.Tenant.name == tenant_name).first()
            if not tenant:
                tenant = models.Tenant(name=tenant_name, status="ATIVO")
                db.add(tenant)
                db.flush()
        role = Role.ADMIN.value if tenant else Role.SUPER_ADMIN.value
        tenant_id = tenant.id if tenant else None
        user = (
            db.query(models.User)
            .filter(models.User.login == login, models.User.tenant_id == tenant_id)
            .first()
        )
        if not user:
            user = models.User(
                tenant_id=tenant_id,
                name=login,
                login=login,
                role=role,
                functions=sorted(FUNCTIONS),
                password_hash=get_password_hash(password),
            )
            db.add(user)
        else:
            user.password_hash = get_password_hash(password)
            user.status = "active"
        db.commit()
        print(f"{role} ativo: {user.login}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
