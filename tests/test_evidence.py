import hashlib
import pathlib
from io import BytesIO

import pytest
from PIL import Image

from assistec.core.config import settings
from assistec.core.constants import EvidenceStage, OrderStatus
from assistec.core.errors import Forbidden, NotFound, ValidationError
from assistec.db import models
from assistec.db.session import unit_of_work
from assistec.services import evidence as evidence_service
from assistec.services.audit import Actor


def _png_bytes(size=(1200, 800)):
    image = Image.new("RGB", size, color=(200, 30, 30))
    buf = BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


def _upload(db, order, actor, storage, data=b"conteudo", stage=EvidenceStage.ENTRADA, mime="text/plain"):
    return evidence_service.upload_evidence(
        db,
        order,
        actor,
        data=data,
        stage=stage,
        description="Vistoria",
        file_name="foto.png",
        mime=mime,
        storage=storage,
    )


def test_upload_image_stores_digest_and_thumbnail(db_session, make_order, clerk, storage):
    order = make_order()
    data = _png_bytes()
    evidence = _upload(db_session, order, clerk, storage, data=data, mime="image/png")

    assert evidence.file_hash == hashlib.sha256(data).hexdigest()
    assert evidence.size == len(data)
    assert evidence.active
    assert evidence.thumb_url is not None
    thumb = Image.open(BytesIO(storage.read_bytes(evidence.thumb_url)))
    assert thumb.format == "JPEG"
    assert max(thumb.size) <= 600
    assert storage.read_bytes(evidence.url) == data
    assert order.audit_log[0].action == "EVIDENCE_UPLOAD"


def test_unreadable_image_skips_thumbnail(db_session, make_order, clerk, storage):
    order = make_order()
    evidence = _upload(db_session, order, clerk, storage, data=b"not-an-image", mime="image/jpeg")
    assert evidence.thumb_url is None
    assert evidence.file_hash == hashlib.sha256(b"not-an-image").hexdigest()


def test_upload_validation(db_session, make_order, clerk, storage, monkeypatch):
    order = make_order()
    with pytest.raises(ValidationError):
        _upload(db_session, order, clerk, storage, data=b"")
    with pytest.raises(ValidationError) as exc:
        _upload(db_session, order, clerk, storage, stage="SELFIE")
    assert exc.value.field == "stage"

    monkeypatch.setattr(settings, "MAX_EVIDENCE_BYTES", 4)
    with pytest.raises(ValidationError):
        _upload(db_session, order, clerk, storage, data=b"12345")


def test_upload_blocked_on_terminal_order(db_session, make_order, clerk, storage):
    order = make_order()
    order.status = OrderStatus.PICKED_UP.value
    db_session.commit()
    with pytest.raises(ValidationError):
        _upload(db_session, order, clerk, storage)


def test_retire_keeps_record_and_digest(db_session, make_order, clerk, admin, storage):
    order = make_order()
    evidence = _upload(db_session, order, clerk, storage)
    db_session.commit()
    digest, created_at = evidence.file_hash, evidence.created_at

    with unit_of_work(db_session):
        evidence_service.retire_evidence(db_session, admin, evidence.id)

    assert evidence.lifecycle == "RETIRED"
    assert evidence.active is False
    assert evidence.retired_by == admin.id
    assert (evidence.file_hash, evidence.created_at) == (digest, created_at)
    assert evidence_service.list_active_evidence(order) == []
    assert evidence_service.get_evidence(db_session, clerk, evidence.id).id == evidence.id

    with pytest.raises(ValidationError):
        evidence_service.retire_evidence(db_session, admin, evidence.id)


def test_retire_denied_for_non_privileged_is_audited(db_session, make_order, clerk, storage):
    order = make_order()
    evidence = _upload(db_session, order, clerk, storage)
    db_session.commit()

    with pytest.raises(Forbidden):
        with unit_of_work(db_session):
            evidence_service.retire_evidence(db_session, clerk, evidence.id)

    db_session.refresh(evidence)
    assert evidence.active is True
    denied = db_session.query(models.AuditLog).filter(models.AuditLog.action == "EVIDENCE_RETIRE_DENIED").one()
    assert denied.actor_id == clerk.id
    assert denied.entity_id == evidence.id


def test_cross_tenant_read_is_forbidden_and_audited(db_session, make_order, clerk, storage, other_tenant):
    order = make_order()
    evidence = _upload(db_session, order, clerk, storage)
    db_session.commit()
    outsider = Actor(id="u9", name="Outro", role="ADMIN", tenant_id=other_tenant.id)

    with pytest.raises(Forbidden):
        with unit_of_work(db_session):
            evidence_service.get_evidence(db_session, outsider, evidence.id)
    denied = db_session.query(models.AuditLog).filter(models.AuditLog.action == "EVIDENCE_ACCESS_DENIED").one()
    assert denied.tenant_id == other_tenant.id

    with pytest.raises(NotFound):
        evidence_service.get_evidence(db_session, clerk, "nao-existe")


def test_active_listing_grouped_by_stage(db_session, make_order, clerk, storage):
    order = make_order()
    _upload(db_session, order, clerk, storage, stage=EvidenceStage.DIAGNOSTICO)
    _upload(db_session, order, clerk, storage, stage=EvidenceStage.ENTRADA)
    _upload(db_session, order, clerk, storage, stage=EvidenceStage.ENTRADA, data=b"outra")

    grouped = evidence_service.list_active_evidence(order)
    assert [group["stage"] for group in grouped] == ["ENTRADA", "DIAGNOSTICO"]
    assert len(grouped[0]["evidence"]) == 2
    assert grouped[0]["label"] == "Foto de Entrada/Vistoria"


def test_digest_reverification_detects_tampering(db_session, make_order, clerk, storage):
    order = make_order()
    evidence = _upload(db_session, order, clerk, storage)
    assert evidence_service.verify_evidence_digest(db_session, clerk, evidence.id, storage)["matches"] is True

    pathlib.Path(evidence.url[len("file://"):]).write_bytes(b"adulterado")
    result = evidence_service.verify_evidence_digest(db_session, clerk, evidence.id, storage)
    assert result["matches"] is False
    assert result["file_hash"] == evidence.file_hash
