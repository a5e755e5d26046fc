from decimal import Decimal
from unittest.mock import patch

import pytest

from assistec.core.constants import ApprovalStatus, OrderStatus
from assistec.core.errors import AlreadyResponded, IntegrityFailure, NotFound, ValidationError
from assistec.db import models
from assistec.db.session import unit_of_work
from assistec.services import approvals, orchestration, orders, receipts
from assistec.services.approvals import SignaturePayload
from assistec.services.audit import Actor, ClientInfo

CLIENT = ClientInfo(ip="200.100.50.25", user_agent="pytest")


@pytest.fixture()
def quoted_order(make_order):
    return make_order(
        OrderStatus.IN_ANALYSIS,
        items=[("Troca de tela", "100.00", "critical"), ("Pelicula", "50.00", "recommended")],
    )


@pytest.fixture()
def request_sent(db_session, quoted_order, clerk):
    with unit_of_work(db_session):
        request = orchestration.request_approval(db_session, quoted_order, clerk, description="Orcamento tela")
    return request


def test_request_snapshot_and_token(db_session, quoted_order, request_sent):
    approval = request_sent.approval
    assert quoted_order.status == OrderStatus.AWAITING_APPROVAL.value
    assert approval.status == ApprovalStatus.PENDING.value
    assert approval.total_value == Decimal("150.00")
    assert approval.token_hash == approvals.hash_token(request_sent.token)
    assert request_sent.token not in approval.token_hash
    assert request_sent.link.endswith(f"/aprovacao/{request_sent.token}")
    assert [entry["approved"] for entry in approval.items_snapshot] == [True, True]
    assert {entry["severity"] for entry in approval.items_snapshot} == {"critical", "recommended"}
    assert request_sent.notification.link.startswith("https://wa.me/5511987654321?text=")


def test_request_without_items_is_rejected(db_session, make_order, clerk):
    order = make_order(OrderStatus.IN_ANALYSIS)
    with pytest.raises(ValidationError) as exc:
        approvals.create_approval_request(db_session, order, clerk)
    assert exc.value.field == "items"


def test_customer_declines_recommended_item(db_session, quoted_order, request_sent, signature, storage):
    critical, recommended = quoted_order.items
    with unit_of_work(db_session):
        outcome = orchestration.submit_approval_decision(
            db_session,
            request_sent.token,
            "APPROVE",
            signature=signature,
            choices={recommended.id: False},
            client=CLIENT,
            storage=storage,
        )

    approval = outcome.result.approval
    assert approval.status == ApprovalStatus.APPROVED.value
    assert approval.approval_method == "REMOTO"
    assert approval.total_value == Decimal("100.00")
    assert approval.ip_address == CLIENT.ip
    assert quoted_order.status == OrderStatus.APPROVED.value
    assert quoted_order.total_value == Decimal("100.00")
    assert (critical.approved, recommended.approved) == (True, False)

    assert len(approval.verification_hash) == 64
    assert approval.receipt_url.startswith("file://")
    assert approval.signature.signed_name == "Maria Souza"
    actions = [entry.action for entry in quoted_order.audit_log]
    assert "APPROVAL_APPROVED" in actions
    assert all("iVBOR" not in str(entry.changes) for entry in quoted_order.audit_log)


def test_critical_item_cannot_be_declined_by_customer(db_session, quoted_order, request_sent, signature):
    critical = quoted_order.items[0]
    with pytest.raises(ValidationError) as exc:
        with unit_of_work(db_session):
            orchestration.submit_approval_decision(
                db_session, request_sent.token, "APPROVE", signature=signature, choices={critical.id: False}
            )
    assert exc.value.field == "items"
    db_session.refresh(request_sent.approval)
    assert request_sent.approval.status == ApprovalStatus.PENDING.value


def test_second_submission_is_already_responded(db_session, request_sent, signature, storage):
    with unit_of_work(db_session):
        orchestration.submit_approval_decision(
            db_session, request_sent.token, "APPROVE", signature=signature, storage=storage
        )
    approval = request_sent.approval
    stored = (approval.status, approval.verification_hash, approval.responded_at)

    with pytest.raises(AlreadyResponded):
        with unit_of_work(db_session):
            orchestration.submit_approval_decision(db_session, request_sent.token, "REJECT")

    db_session.refresh(approval)
    assert (approval.status, approval.verification_hash, approval.responded_at) == stored


def test_concurrent_close_loses_conditional_update(db_session, request_sent, signature, storage):
    approval = request_sent.approval
    assert approval.status == ApprovalStatus.PENDING.value
    # Another request closed it after this session loaded the row.
    db_session.query(models.ServiceApproval).filter(models.ServiceApproval.id == approval.id).update(
        {models.ServiceApproval.status: ApprovalStatus.REJECTED.value}, synchronize_session=False
    )
    assert approval.status == ApprovalStatus.PENDING.value

    with pytest.raises(AlreadyResponded):
        approvals.process_approval_decision(
            db_session,
            approval,
            "APPROVE",
            actor=Actor.customer(approval.tenant_id),
            signature=signature,
            storage=storage,
        )
    assert db_session.query(models.DigitalSignature).count() == 0


def test_receipt_failure_rolls_back_to_pending(db_session, quoted_order, request_sent, signature, storage):
    with patch("assistec.services.receipts.render_receipt_pdf", side_effect=RuntimeError("pango")):
        with pytest.raises(IntegrityFailure):
            with unit_of_work(db_session):
                orchestration.submit_approval_decision(
                    db_session, request_sent.token, "APPROVE", signature=signature, storage=storage
                )

    approval = request_sent.approval
    db_session.refresh(approval)
    assert approval.status == ApprovalStatus.PENDING.value
    assert approval.verification_hash is None
    assert approval.digital_signature_id is None
    assert db_session.query(models.DigitalSignature).count() == 0
    db_session.refresh(quoted_order)
    assert quoted_order.status == OrderStatus.AWAITING_APPROVAL.value

    with unit_of_work(db_session):
        orchestration.submit_approval_decision(
            db_session, request_sent.token, "APPROVE", signature=signature, storage=storage
        )
    assert approval.status == ApprovalStatus.APPROVED.value


def test_approve_requires_drawn_signature_and_terms(db_session, request_sent):
    unsigned = SignaturePayload(signed_name="Maria", signature_image=None, confirmation_checked=True)
    with pytest.raises(ValidationError) as exc:
        approvals.submit_approval_decision(db_session, request_sent.token, "APPROVE", signature=unsigned)
    assert exc.value.field == "signature_image"

    unchecked = SignaturePayload(signed_name="Maria", signature_image="data:x", confirmation_checked=False)
    with pytest.raises(ValidationError) as exc:
        approvals.submit_approval_decision(db_session, request_sent.token, "APPROVE", signature=unchecked)
    assert exc.value.field == "confirmation_checked"


def test_customer_rejection(db_session, quoted_order, request_sent):
    with unit_of_work(db_session):
        outcome = orchestration.submit_approval_decision(
            db_session, request_sent.token, "REJECT", rejection_reason="Muito caro"
        )
    approval = outcome.result.approval
    assert approval.status == ApprovalStatus.REJECTED.value
    assert approval.rejection_reason == "Muito caro"
    assert approval.verification_hash is None
    assert quoted_order.status == OrderStatus.REJECTED.value
    assert quoted_order.total_value == Decimal("0.00")
    assert quoted_order.status_history[0].reason == "Recusado pelo cliente: Muito caro"


def test_unknown_token(db_session):
    with pytest.raises(NotFound):
        approvals.get_approval_by_token(db_session, "nao-existe")


def test_approval_view_hides_internal_fields(db_session, request_sent):
    view = approvals.build_approval_view(approvals.get_approval_by_token(db_session, request_sent.token))
    assert view["company_name"] == "Assistencia Centro"
    assert view["total_value"] == "150.00"
    assert "token_hash" not in view


def test_in_person_approval(db_session, quoted_order, clerk, signature, storage):
    with unit_of_work(db_session):
        outcome = orchestration.register_in_person_approval(
            db_session, quoted_order, clerk, signature, client=CLIENT, storage=storage
        )
    approval = outcome.result.approval
    assert approval.approval_method == "PRESENCIAL"
    assert approval.signature.kind == "DRAWN"
    assert quoted_order.status == OrderStatus.APPROVED.value
    assert quoted_order.total_value == Decimal("150.00")
    assert approval.responded_at is not None
    assert receipts.verify(db_session, approval.verification_hash)["matches"] is True


def test_in_person_reuses_pending_request(db_session, quoted_order, request_sent, clerk, signature, storage):
    with unit_of_work(db_session):
        outcome = orchestration.register_in_person_approval(
            db_session, quoted_order, clerk, signature, storage=storage
        )
    assert outcome.result.approval.id == request_sent.approval.id
    assert db_session.query(models.ServiceApproval).count() == 1


def test_physical_document_approval(db_session, quoted_order, clerk, storage):
    with unit_of_work(db_session):
        outcome = orchestration.register_physical_approval(
            db_session,
            quoted_order,
            clerk,
            data=b"%PDF-1.4 termo assinado",
            file_name="termo.pdf",
            mime="application/pdf",
            signer_document="123.456.789-00",
            storage=storage,
        )
    approval = outcome.result.approval
    signature = approval.signature
    assert approval.approval_method == "PRESENCIAL_DOCUMENTO"
    assert signature.kind == "PHYSICAL_DOCUMENT"
    assert signature.signed_name == "Maria Souza"
    assert signature.signature_image is None
    assert approval.evidence_id == signature.document_evidence_id
    assert signature.document_evidence.stage == "APROVACAO_DOCUMENTAL"
    assert quoted_order.status == OrderStatus.APPROVED.value
    assert approval.responded_at is not None
    assert receipts.verify(db_session, approval.verification_hash)["matches"] is True


def test_manual_approved_transition_is_blocked(db_session, quoted_order, request_sent, clerk):
    with pytest.raises(ValidationError):
        orchestration.transition_order(db_session, quoted_order, OrderStatus.APPROVED, clerk)


def test_staff_rejection_closes_pending_approval(db_session, quoted_order, request_sent, clerk):
    with unit_of_work(db_session):
        orchestration.transition_order(
            db_session, quoted_order, OrderStatus.REJECTED, clerk, reason="Cliente recusou por telefone"
        )
    assert request_sent.approval.status == ApprovalStatus.REJECTED.value
    assert request_sent.approval.approval_method == "PRESENCIAL"
    assert quoted_order.status == OrderStatus.REJECTED.value


def _move_to(db_session, order, clerk, signature, storage, source):
    if source == OrderStatus.IN_PROGRESS:
        with unit_of_work(db_session):
            orchestration.register_in_person_approval(db_session, order, clerk, signature, storage=storage)
            orchestration.transition_order(db_session, order, OrderStatus.IN_PROGRESS, clerk)
    elif source == OrderStatus.REJECTED:
        with unit_of_work(db_session):
            orchestration.request_approval(db_session, order, clerk)
            orchestration.transition_order(db_session, order, OrderStatus.REJECTED, clerk, reason="Sem verba")
    assert order.status == source.value
    with unit_of_work(db_session):
        orchestration.transition_order(db_session, order, OrderStatus.AWAITING_APPROVAL, clerk)


SOURCES = [OrderStatus.IN_ANALYSIS, OrderStatus.IN_PROGRESS, OrderStatus.REJECTED]


@pytest.mark.parametrize("source", SOURCES)
def test_remote_request_after_manual_awaiting_approval(
    db_session, quoted_order, clerk, signature, storage, source
):
    _move_to(db_session, quoted_order, clerk, signature, storage, source)

    with unit_of_work(db_session):
        request = orchestration.request_approval(db_session, quoted_order, clerk)
    assert quoted_order.status == OrderStatus.AWAITING_APPROVAL.value
    assert request.approval.status == ApprovalStatus.PENDING.value

    with unit_of_work(db_session):
        orchestration.submit_approval_decision(
            db_session, request.token, "APPROVE", signature=signature, client=CLIENT, storage=storage
        )
    assert quoted_order.status == OrderStatus.APPROVED.value
    assert quoted_order.total_value == Decimal("150.00")


@pytest.mark.parametrize("source", SOURCES)
def test_in_person_after_manual_awaiting_approval(
    db_session, quoted_order, clerk, signature, storage, source
):
    _move_to(db_session, quoted_order, clerk, signature, storage, source)

    with unit_of_work(db_session):
        outcome = orchestration.register_in_person_approval(
            db_session, quoted_order, clerk, signature, storage=storage
        )
    assert outcome.result.approval.verification_hash
    assert quoted_order.status == OrderStatus.APPROVED.value


def test_second_pending_request_is_refused(db_session, quoted_order, request_sent, clerk):
    with pytest.raises(ValidationError) as exc:
        orchestration.request_approval(db_session, quoted_order, clerk)
    assert exc.value.field == "status"


def test_in_person_refreshes_stale_pending_snapshot(
    db_session, quoted_order, request_sent, clerk, signature, storage
):
    with unit_of_work(db_session):
        orders.add_item(db_session, quoted_order, clerk, name="Bateria", price="80.00", severity="critical")

    with unit_of_work(db_session):
        outcome = orchestration.register_in_person_approval(
            db_session, quoted_order, clerk, signature, storage=storage
        )
    approval = outcome.result.approval
    assert approval.id == request_sent.approval.id
    assert [entry["name"] for entry in approval.items_snapshot] == ["Troca de tela", "Pelicula", "Bateria"]
    assert quoted_order.total_value == Decimal("230.00")
    actions = [entry.action for entry in quoted_order.audit_log]
    assert "APPROVAL_SNAPSHOT_REFRESHED" in actions
    assert receipts.verify(db_session, approval.verification_hash)["matches"] is True
