import unittest
from decimal import Decimal

from assistec.services import audit
from assistec.services.audit import Actor


class SanitizeTests(unittest.TestCase):
    def test_nested_sensitive_keys_are_redacted(self):
        changes = {
            "after": {"signed_name": "Ana", "signature_image": "data:image/png;base64,AAA"},
            "users": [{"login": "ana", "password": "123"}],
        }
        cleaned = audit.sanitize_changes(changes)
        self.assertEqual(cleaned["after"]["signature_image"], "[REDACTED]")
        self.assertEqual(cleaned["after"]["signed_name"], "Ana")
        self.assertEqual(cleaned["users"][0]["password"], "[REDACTED]")
        self.assertEqual(changes["users"][0]["password"], "123")

    def test_money_becomes_json_safe(self):
        cleaned = audit.sanitize_changes({"after": {"price": Decimal("10.5")}})
        self.assertEqual(cleaned, {"after": {"price": "10.50"}})

    def test_empty_changes(self):
        self.assertIsNone(audit.sanitize_changes(None))


def test_entries_are_tenant_scoped(db_session, make_order, clerk, other_tenant):
    order = make_order()
    outsider = Actor(id="u5", name="Outro", role="ADMIN", tenant_id=other_tenant.id)
    audit.record(
        db_session,
        tenant_id=other_tenant.id,
        action="LOGIN",
        entity_type="USER",
        entity_id=outsider.id,
        actor=outsider,
        details="Login",
    )
    db_session.commit()

    own = audit.list_entries(db_session, clerk)
    assert {entry.tenant_id for entry in own} == {order.tenant_id}
    assert [entry.action for entry in audit.list_entries(db_session, outsider)] == ["LOGIN"]

    root = Actor(id="root", name="Root", role="SUPER_ADMIN")
    assert len(audit.list_entries(db_session, root)) == len(own) + 1
    assert len(audit.list_entries(db_session, root, tenant_id=other_tenant.id)) == 1
    scoped = audit.list_entries(db_session, clerk, tenant_id=other_tenant.id)
    assert {entry.id for entry in scoped} == {entry.id for entry in own}


def test_filters(db_session, make_order, clerk):
    order = make_order(items=[("Tela", "100", "critical")])
    make_order()
    by_order = audit.list_entries(db_session, clerk, order_id=order.id)
    assert {entry.order_id for entry in by_order} == {order.id}
    items = audit.list_entries(db_session, clerk, entity_type="ITEM")
    assert [entry.action for entry in items] == ["ITEM_ADDED"]
