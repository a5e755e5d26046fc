from decimal import Decimal

import pytest

from assistec.core.constants import OrderStatus
from assistec.core.errors import NotFound, ValidationError
from assistec.services import orders
from assistec.services.audit import Actor


def test_create_order_requires_tenant_and_customer(db_session, clerk):
    with pytest.raises(ValidationError) as exc:
        orders.create_order(db_session, clerk, customer_name=" ", device="Notebook")
    assert exc.value.field == "customer_name"

    orphan = Actor(id="u1", name="Sem empresa", role="FUNCIONARIO", tenant_id=None)
    with pytest.raises(ValidationError) as exc:
        orders.create_order(db_session, orphan, customer_name="Ana", device="Notebook")
    assert exc.value.field == "tenant_id"


def test_create_order_starts_in_draft(db_session, make_order):
    order = make_order()
    assert order.status == OrderStatus.DRAFT.value
    assert order.total_value == Decimal("0.00")
    assert order.audit_log[0].action == "ORDER_CREATED"
    assert len(orders.order_protocol(order.id)) == 8


def test_total_tracks_approved_items(db_session, make_order, clerk):
    order = make_order()
    screen = orders.add_item(db_session, order, clerk, name="Tela", price="100", severity="critical")
    film = orders.add_item(db_session, order, clerk, name="Pelicula", price="50.00", severity="recommended")
    assert order.total_value == Decimal("150.00")
    assert screen.required is True
    assert film.required is False

    orders.set_item_approved(db_session, order, clerk, film.id, False)
    assert order.total_value == Decimal("100.00")

    orders.set_item_approved(db_session, order, clerk, film.id, True)
    orders.remove_item(db_session, order, clerk, screen.id)
    assert order.total_value == Decimal("50.00")
    assert [entry.action for entry in order.audit_log[:3]] == ["ITEM_REMOVED", "ITEM_UPDATED", "ITEM_UPDATED"]


def test_critical_item_cannot_be_declined(db_session, make_order, clerk):
    order = make_order(items=[("Tela", "100.00", "critical")])
    with pytest.raises(ValidationError):
        orders.set_item_approved(db_session, order, clerk, order.items[0].id, False)
    assert order.items[0].approved is True


@pytest.mark.parametrize("price", ["-1", "abc", "NaN", None])
def test_invalid_prices_are_rejected(db_session, make_order, clerk, price):
    order = make_order()
    with pytest.raises(ValidationError) as exc:
        orders.add_item(db_session, order, clerk, name="Item", price=price)
    assert exc.value.field == "price"
    assert order.items == []


def test_unknown_severity(db_session, make_order, clerk):
    order = make_order()
    with pytest.raises(ValidationError) as exc:
        orders.add_item(db_session, order, clerk, name="Item", price="10", severity="urgent")
    assert exc.value.field == "severity"


def test_apply_approval_snapshot_leaves_unlisted_items_out(db_session, make_order, clerk):
    order = make_order(
        items=[("Tela", "100", "critical"), ("Pelicula", "50", "recommended"), ("Capa", "30", "recommended")]
    )
    screen, film, case = order.items
    snapshot = [
        {"id": screen.id, "approved": True},
        {"id": film.id, "approved": False},
    ]
    total = orders.apply_approval_snapshot(order, snapshot, rejected=False)
    assert total == Decimal("100.00")
    assert (screen.approved, film.approved, case.approved) == (True, False, False)

    assert orders.apply_approval_snapshot(order, snapshot, rejected=True) == Decimal("0.00")


def test_checklist_entries(db_session, make_order, clerk):
    order = make_order()
    entry = orders.add_checklist_entry(db_session, order, clerk, label="Tela trincada", notes="canto superior")
    assert order.checklist == [entry]
    orders.remove_checklist_entry(db_session, order, clerk, entry.id)
    assert order.checklist == []
    with pytest.raises(NotFound):
        orders.remove_checklist_entry(db_session, order, clerk, entry.id)


def test_terminal_order_is_frozen(db_session, make_order, clerk):
    order = make_order()
    order.status = OrderStatus.CANCELLED.value
    db_session.commit()
    with pytest.raises(ValidationError):
        orders.add_checklist_entry(db_session, order, clerk, label="Teste")
    with pytest.raises(ValidationError):
        orders.add_item(db_session, order, clerk, name="Item", price="10")


def test_get_order_is_tenant_scoped(db_session, make_order, other_tenant):
    order = make_order()
    outsider = Actor(id="u2", name="Outro", role="ADMIN", tenant_id=other_tenant.id)
    with pytest.raises(NotFound):
        orders.get_order(db_session, outsider, order.id)

    root = Actor(id="root", name="Root", role="SUPER_ADMIN", tenant_id=None)
    assert orders.get_order(db_session, root, order.id).id == order.id


def test_order_snapshot(db_session, make_order):
    order = make_order(OrderStatus.IN_ANALYSIS, items=[("Tela", "100", "critical")])
    snapshot = orders.order_snapshot(order)
    assert snapshot["status_label"] == "Em Analise"
    assert snapshot["allowed_transitions"] == ["AWAITING_APPROVAL", "CANCELLED"]
    assert snapshot["total_value"] == "100.00"
    assert [h["to"] for h in snapshot["status_history"]] == ["IN_ANALYSIS", "AWAITING_ANALYSIS"]
