import copy
from datetime import timedelta

import pytest

from assistec.core.constants import ApprovalStatus, OrderStatus
from assistec.core.errors import IntegrityFailure, NotFound, ValidationError
from assistec.db import models
from assistec.db.session import unit_of_work
from assistec.services import hashing, orchestration, receipts
from assistec.services.audit import Actor


@pytest.fixture()
def approved(db_session, make_order, clerk, signature, storage):
    order = make_order(
        OrderStatus.IN_ANALYSIS,
        items=[("Troca de tela", "100.00", "critical"), ("Pelicula", "50.00", "recommended")],
    )
    with unit_of_work(db_session):
        outcome = orchestration.register_in_person_approval(
            db_session, order, clerk, signature, choices={order.items[1].id: False}, storage=storage
        )
    return outcome.result.approval


def test_verify_matches_stored_hash(db_session, approved):
    summary = receipts.verify(db_session, approved.verification_hash)
    assert summary["matches"] is True
    assert summary["company_name"] == "Assistencia Centro"
    assert summary["company_cnpj"] == "12.345.678/0001-90"
    assert summary["customer_first_name"] == "Maria"
    assert summary["total_value"] == "100.00"
    assert summary["approval_method"] == "PRESENCIAL"
    assert "customer_name" not in summary
    assert approved.order.audit_log[0].action == "VERIFICATION_ATTEMPT"


def test_verify_unknown_hash_is_audited(db_session, approved):
    with pytest.raises(NotFound) as exc:
        with unit_of_work(db_session):
            receipts.verify(db_session, "0" * 64)
    assert exc.value.audit is not None
    failed = db_session.query(models.AuditLog).filter(models.AuditLog.action == "VERIFICATION_FAILED").all()
    assert len(failed) == 1
    assert failed[0].details == "Hash desconhecido: 00000000"


def test_tampered_snapshot_fails_verification(db_session, approved):
    tampered = copy.deepcopy(approved.items_snapshot)
    tampered[0]["price"] = "10.00"
    approved.items_snapshot = tampered
    db_session.commit()

    summary = receipts.verify(db_session, approved.verification_hash)
    assert summary["matches"] is False
    assert approved.order.audit_log[0].action == "VERIFICATION_FAILED"


def test_hash_changes_with_each_input(approved):
    signature = approved.signature
    base = receipts.generate_verification_hash(approved, signature)
    assert base == approved.verification_hash

    variants = []
    snapshot = copy.deepcopy(approved.items_snapshot)
    snapshot[1]["approved"] = True
    variants.append({"items_snapshot": snapshot})
    variants.append({"responded_at": approved.responded_at + timedelta(milliseconds=1)})
    variants.append({"order_id": "outra-os"})

    for changes in variants:
        original = {key: getattr(approved, key) for key in changes}
        for key, value in changes.items():
            setattr(approved, key, value)
        assert receipts.generate_verification_hash(approved, signature) != base
        for key, value in original.items():
            setattr(approved, key, value)

    original_id = signature.id
    signature.id = "outra-assinatura"
    assert receipts.generate_verification_hash(approved, signature) != base
    signature.id = original_id


def test_hash_depends_on_key(approved):
    payload = receipts.build_verification_payload(approved, approved.signature)
    assert hashing.keyed_digest(payload, "a") != hashing.keyed_digest(payload, "b")


def test_hash_requires_response_timestamp(approved):
    approved.responded_at = None
    with pytest.raises(IntegrityFailure):
        receipts.generate_verification_hash(approved, approved.signature)


def test_receipt_payload_lists_only_approved_items(approved):
    payload = receipts.receipt_payload(approved, approved.signature)
    assert [item["name"] for item in payload["items"]] == ["Troca de tela"]
    assert payload["verification_url"].endswith(f"/verify/{approved.verification_hash}")
    assert payload["qr_data_url"].startswith("data:image/png;base64,")
    assert payload["approval"]["method_label"] == "Presencial (assinatura digital)"


def test_ensure_receipt_and_regeneration(db_session, approved, admin, storage, fake_pdf):
    url = receipts.ensure_receipt(db_session, admin, approved.id, storage=storage)
    assert url == approved.receipt_url
    calls = fake_pdf.call_count

    regenerated = receipts.ensure_receipt(db_session, admin, approved.id, regenerate=True, storage=storage)
    assert fake_pdf.call_count == calls + 1
    assert regenerated != url


def test_receipt_blocked_without_hash(db_session, approved, admin, storage):
    approved.verification_hash = None
    db_session.commit()
    with pytest.raises(IntegrityFailure):
        receipts.ensure_receipt(db_session, admin, approved.id, storage=storage)


def test_receipt_requires_approved_status(db_session, make_order, clerk, admin):
    order = make_order(OrderStatus.IN_ANALYSIS, items=[("Tela", "100", "critical")])
    with unit_of_work(db_session):
        request = orchestration.request_approval(db_session, order, clerk)
    assert request.approval.status == ApprovalStatus.PENDING.value
    with pytest.raises(ValidationError):
        receipts.ensure_receipt(db_session, admin, request.approval.id)


def test_receipt_is_tenant_scoped(db_session, approved, other_tenant):
    outsider = Actor(id="x", name="Outro", role="ADMIN", tenant_id=other_tenant.id)
    with pytest.raises(NotFound):
        receipts.ensure_receipt(db_session, outsider, approved.id)


def test_approval_term_renders(make_order, fake_pdf):
    order = make_order(items=[("Tela", "100", "critical")])
    assert receipts.render_approval_term(order).startswith(b"%PDF")
