import logging
from io import BytesIO
from typing import Optional

from PIL import Image, UnidentifiedImageError
from sqlalchemy.orm import Session

from assistec.core.clock import utcnow
from assistec.core.config import settings
from assistec.core.constants import EVIDENCE_LABELS, EvidenceLifecycle, EvidenceStage
from assistec.core.errors import Forbidden, NotFound, ValidationError
from assistec.db import models
from assistec.services import audit, hashing
from assistec.services import state_machine as sm
from assistec.services.audit import Actor, ClientInfo
from assistec.services.storage import StorageClient, StorageError, build_object_name, get_storage

logger = logging.getLogger("assistec.evidence")


def coerce_stage(value) -> EvidenceStage:
    try:
        return EvidenceStage(value)
    except ValueError as exc:
        raise ValidationError(f"Etapa de evidencia invalida: {value}", field="stage") from exc


def _make_thumbnail(data: bytes) -> bytes:
    image = Image.open(BytesIO(data))
    image = image.convert("RGB")
    image.thumbnail((600, 600))
    out = BytesIO()
    image.save(out, format="JPEG", quality=82)
    return out.getvalue()


def upload_evidence(
    db: Session,
    order: models.ServiceOrder,
    actor: Actor,
    *,
    data: bytes,
    stage,
    description: str = "",
    file_name: Optional[str] = None,
    mime: Optional[str] = None,
    storage: Optional[StorageClient] = None,
    client: Optional[ClientInfo] = None,
) -> models.Evidence:
    sm.assert_not_terminal(order)
    stage = coerce_stage(stage)
    if not data:
        raise ValidationError("Arquivo vazio.", field="file")
    if len(data) > settings.MAX_EVIDENCE_BYTES:
        raise ValidationError("Arquivo excede o tamanho maximo permitido.", field="file")

    file_hash = hashing.sha256_hex(data)
    storage = storage or get_storage()
    file_name = file_name or "evidencia"
    url = storage.upload_bytes(data, build_object_name(order.id, stage.value, file_name), mime)
    thumb_url = None
    if mime and mime.startswith("image/"):
        try:
            thumb_data = _make_thumbnail(data)
        except (UnidentifiedImageError, OSError):
            logger.warning("thumbnail skipped order=%s file=%s", order.id, file_name)
        else:
            thumb_url = storage.upload_bytes(
                thumb_data, build_object_name(order.id, f"{stage.value}_THUMB", "thumb.jpg"), "image/jpeg"
            )

    evidence = models.Evidence(
        tenant_id=order.tenant_id,
        stage=stage.value,
        url=url,
        thumb_url=thumb_url,
        file_name=file_name,
        mime=mime,
        size=len(data),
        description=description or "",
        file_hash=file_hash,
        uploaded_by=actor.id,
        uploaded_by_name=actor.name,
        lifecycle=EvidenceLifecycle.ACTIVE.value,
        created_at=utcnow(),
    )
    order.evidence.append(evidence)
    db.add(evidence)
    db.flush()
    audit.record_order_event(
        db,
        order,
        action="EVIDENCE_UPLOAD",
        actor=actor,
        entity_type="EVIDENCE",
        entity_id=evidence.id,
        details=f"Evidencia anexada: {EVIDENCE_LABELS[stage]}",
        changes={"after": {"stage": stage.value, "file_hash": file_hash, "size": len(data)}},
        client=client,
    )
    logger.info("evidence uploaded order=%s stage=%s hash=%s", order.id, stage.value, file_hash[:8])
    return evidence


def get_evidence(
    db: Session, actor: Actor, evidence_id: str, client: Optional[ClientInfo] = None
) -> models.Evidence:
    """Lookup by id, retired records included."""
    evidence = db.query(models.Evidence).filter(models.Evidence.id == evidence_id).first()
    if not evidence:
        raise NotFound("Evidencia nao encontrada")
    if not actor.is_super_admin and evidence.tenant_id != actor.tenant_id:
        raise Forbidden(
            "Evidencia pertence a outra empresa.",
            audit=audit.build_entry(
                tenant_id=actor.tenant_id,
                action="EVIDENCE_ACCESS_DENIED",
                entity_type="EVIDENCE",
                entity_id=evidence_id,
                actor=actor,
                details="Tentativa de acesso a evidencia de outra empresa",
                client=client,
            ),
        )
    return evidence


def retire_evidence(
    db: Session, actor: Actor, evidence_id: str, client: Optional[ClientInfo] = None
) -> models.Evidence:
    evidence = get_evidence(db, actor, evidence_id, client)
    if not actor.is_privileged:
        logger.warning("evidence retire denied evidence=%s actor=%s", evidence_id, actor.id)
        raise Forbidden(
            "Apenas administradores podem remover evidencias.",
            audit=audit.build_entry(
                tenant_id=evidence.tenant_id,
                order_id=evidence.order_id,
                action="EVIDENCE_RETIRE_DENIED",
                entity_type="EVIDENCE",
                entity_id=evidence_id,
                actor=actor,
                details=f"Remocao de evidencia negada para perfil {actor.role}",
                client=client,
            ),
        )
    order = evidence.order
    sm.assert_not_terminal(order)
    if not evidence.active:
        raise ValidationError("Evidencia ja removida.", field="evidence")

    evidence.lifecycle = EvidenceLifecycle.RETIRED.value
    evidence.retired_at = utcnow()
    evidence.retired_by = actor.id
    audit.record_order_event(
        db,
        order,
        action="EVIDENCE_RETIRED",
        actor=actor,
        entity_type="EVIDENCE",
        entity_id=evidence.id,
        details=f"Evidencia removida da exibicao: {EVIDENCE_LABELS[EvidenceStage(evidence.stage)]}",
        changes={
            "before": {"lifecycle": EvidenceLifecycle.ACTIVE.value},
            "after": {"lifecycle": evidence.lifecycle, "file_hash": evidence.file_hash},
        },
        client=client,
    )
    db.flush()
    return evidence


def list_active_evidence(order: models.ServiceOrder) -> list[dict]:
    grouped = []
    for stage in EvidenceStage:
        records = [ev for ev in order.evidence if ev.active and ev.stage == stage.value]
        if records:
            grouped.append({"stage": stage.value, "label": EVIDENCE_LABELS[stage], "evidence": records})
    return grouped


def verify_evidence_digest(
    db: Session, actor: Actor, evidence_id: str, storage: Optional[StorageClient] = None
) -> dict:
    evidence = get_evidence(db, actor, evidence_id)
    try:
        data = (storage or get_storage()).read_bytes(evidence.url)
    except StorageError as exc:
        raise NotFound("Arquivo da evidencia nao encontrado no armazenamento.") from exc
    computed = hashing.sha256_hex(data)
    return {
        "id": evidence.id,
        "file_hash": evidence.file_hash,
        "computed_hash": computed,
        "matches": hashing.digests_match(computed, evidence.file_hash),
    }


def evidence_to_dict(evidence: models.Evidence, storage: Optional[StorageClient] = None) -> dict:
    storage = storage or get_storage()
    return {
        "id": evidence.id,
        "order_id": evidence.order_id,
        "stage": evidence.stage,
        "url": storage.generate_signed_url(evidence.url),
        "thumb_url": storage.generate_signed_url(evidence.thumb_url) if evidence.thumb_url else None,
        "file_name": evidence.file_name,
        "mime": evidence.mime,
        "size": evidence.size,
        "description": evidence.description,
        "file_hash": evidence.file_hash,
        "uploaded_by": evidence.uploaded_by_name,
        "lifecycle": evidence.lifecycle,
        "active": evidence.active,
        "retired_at": evidence.retired_at,
        "retired_by": evidence.retired_by,
        "created_at": evidence.created_at,
    }
