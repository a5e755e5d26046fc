from sqlalchemy.orm import Query

from assistec.core.constants import PRIVILEGED_ROLES, Role


def is_super_admin(actor) -> bool:
    return actor.role == Role.SUPER_ADMIN.value


def is_privileged(actor) -> bool:
    return actor.role in PRIVILEGED_ROLES


def apply_tenant_scope(query: Query, actor, tenant_field) -> Query:
    """Restrict a query to the actor's tenant; the super-tenant role sees everything."""
    if is_super_admin(actor):
        return query
    return query.filter(tenant_field == actor.tenant_id)
