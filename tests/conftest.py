from unittest.mock import patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from assistec.core.constants import OrderStatus
from assistec.db import models
from assistec.services import orders
from assistec.services import state_machine as sm
from assistec.services.approvals import SignaturePayload
from assistec.services.audit import Actor
from assistec.services.storage import StorageClient

FAKE_PDF = b"%PDF-1.4\n% assistec test\n"


@pytest.fixture()
def db_session(tmp_path, monkeypatch):
    monkeypatch.setenv("LOCAL_STORAGE", "1")
    monkeypatch.setenv("LOCAL_STORAGE_DIR", str(tmp_path / "storage"))
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    models.Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = SessionLocal()
    yield db
    db.close()
    engine.dispose()


@pytest.fixture()
def storage(db_session):
    return StorageClient()


@pytest.fixture(autouse=True)
def fake_pdf():
    with patch("assistec.services.receipts.render_receipt_pdf", return_value=FAKE_PDF) as receipt, patch(
        "assistec.services.receipts.render_term_pdf", return_value=FAKE_PDF
    ):
        yield receipt


def _seed_user(db, tenant, login, role, functions):
    user = models.User(
        tenant_id=tenant.id if tenant else None,
        name=login.title(),
        login=login,
        email=f"{login}@example.com",
        password_hash="x",
        role=role,
        functions=functions,
        status="active",
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture()
def tenant(db_session):
    tenant = models.Tenant(name="Assistencia Centro", cnpj="12.345.678/0001-90", status="ATIVO")
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture()
def other_tenant(db_session):
    tenant = models.Tenant(name="Outra Loja", status="ATIVO")
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture()
def admin_user(db_session, tenant):
    return _seed_user(db_session, tenant, "admin", "ADMIN", [])


@pytest.fixture()
def clerk_user(db_session, tenant):
    return _seed_user(db_session, tenant, "balcao", "FUNCIONARIO", ["BALCAO", "BANCADA"])


@pytest.fixture()
def admin(admin_user):
    return Actor.from_user(admin_user)


@pytest.fixture()
def clerk(clerk_user):
    return Actor.from_user(clerk_user)


@pytest.fixture()
def signature():
    return SignaturePayload(
        signed_name="Maria Souza",
        signature_image="data:image/png;base64,iVBORw0KGgo=",
        confirmation_checked=True,
        signer_document="123.456.789-00",
    )


PATH_TO_ANALYSIS = [OrderStatus.AWAITING_ANALYSIS, OrderStatus.IN_ANALYSIS]


@pytest.fixture()
def make_order(db_session, clerk):
    """Order walked through the state machine up to ``status`` (DRAFT or IN_ANALYSIS path)."""

    def _make(status=OrderStatus.DRAFT, items=(), phone="(11) 98765-4321"):
        order = orders.create_order(
            db_session,
            clerk,
            customer_name="Maria Souza",
            device="iPhone 12",
            customer_phone=phone,
        )
        path = [] if status == OrderStatus.DRAFT else PATH_TO_ANALYSIS[: PATH_TO_ANALYSIS.index(status) + 1]
        for target in path:
            sm.request_transition(db_session, order, target, clerk)
        for name, price, severity in items:
            orders.add_item(db_session, order, clerk, name=name, price=price, severity=severity)
        db_session.commit()
        return order

    return _make
