from __future__ import annotations

from sqlalchemy import select

from actions.helpers import actor_id, append_audit, entity_out, require_id, require_login
from models import Document, HiringManager, Organization, Task, User
from utils import ApiError, AuthContext, has_any, is_privileged, iso_utc_now, pick, to_int_or_none


# entity_type -> owning table, so a document is never attached to a missing row.
_ENTITY_MODELS = {
    "organization": Organization,
    "hiring_manager": HiringManager,
    "task": Task,
}


def _entity_ref(data) -> tuple[str, int]:
    entity_type = str(pick(data, "entityType", "entity_type", default="") or "").strip().lower()
    if entity_type not in _ENTITY_MODELS:
        raise ApiError("BAD_REQUEST", f"Invalid entity type: {entity_type or '(empty)'}")
    entity_id = require_id(data, "entityId", "entity_id", label="entity id")
    return entity_type, entity_id


def _load(db, doc_id: int) -> Document:
    doc = db.get(Document, doc_id)
    if not doc:
        raise ApiError("NOT_FOUND", "Document not found")
    return doc


def _assert_owner(doc: Document, auth: AuthContext, verb: str) -> None:
    if not is_privileged(auth) and doc.created_by != actor_id(auth):
        raise ApiError("FORBIDDEN", f"You do not have permission to {verb} this document")


def document_create(data, auth: AuthContext | None, db, cfg):
    auth = require_login(auth)
    entity_type, entity_id = _entity_ref(data)
    name = str(pick(data, "documentName", "document_name", "name", default="") or "").strip()
    if not name:
        raise ApiError("BAD_REQUEST", "Document name is required")
    if not db.get(_ENTITY_MODELS[entity_type], entity_id):
        raise ApiError("NOT_FOUND", f"{entity_type.replace('_', ' ').capitalize()} not found")

    now = iso_utc_now()
    doc = Document(
        entity_type=entity_type,
        entity_id=entity_id,
        document_name=name,
        document_type=str(pick(data, "documentType", "document_type", default="General") or "General"),
        content_type=pick(data, "contentType", "content_type"),
        file_path=pick(data, "filePath", "file_path"),
        file_size=to_int_or_none(pick(data, "fileSize", "file_size")),
        created_by=actor_id(auth),
        created_at=now,
        updated_at=now,
    )
    db.add(doc)
    db.flush()
    append_audit(db, entityType="DOCUMENT", entityId=doc.id, action="DOCUMENT_CREATE", actor=auth, at=now, meta={"entityType": entity_type, "entityId": entity_id})
    return {"document": entity_out(doc)}


def document_list(data, auth: AuthContext | None, db, cfg):
    require_login(auth)
    entity_type, entity_id = _entity_ref(data)
    rows = db.execute(
        select(Document, User.name.label("created_by_name"))
        .outerjoin(User, User.id == Document.created_by)
        .where(Document.entity_type == entity_type)
        .where(Document.entity_id == entity_id)
        .order_by(Document.created_at.desc(), Document.id.desc())
    ).all()
    return {"documents": [entity_out(r[0], created_by_name=r.created_by_name or "") for r in rows]}


def document_get(data, auth: AuthContext | None, db, cfg):
    require_login(auth)
    return {"document": entity_out(_load(db, require_id(data, "id", "documentId", label="document id")))}


def document_update(data, auth: AuthContext | None, db, cfg):
    auth = require_login(auth)
    doc = _load(db, require_id(data, "id", "documentId", label="document id"))
    _assert_owner(doc, auth, "update")

    if has_any(data, "documentName", "document_name", "name"):
        name = str(pick(data, "documentName", "document_name", "name", default="") or "").strip()
        if not name:
            raise ApiError("BAD_REQUEST", "Document name is required")
        doc.document_name = name
    if has_any(data, "documentType", "document_type"):
        doc.document_type = str(pick(data, "documentType", "document_type") or "General")
    if has_any(data, "contentType", "content_type"):
        doc.content_type = pick(data, "contentType", "content_type")
    if has_any(data, "filePath", "file_path"):
        doc.file_path = pick(data, "filePath", "file_path")
    doc.updated_at = iso_utc_now()
    db.flush()
    append_audit(db, entityType="DOCUMENT", entityId=doc.id, action="DOCUMENT_UPDATE", actor=auth)
    return {"document": entity_out(doc)}


def document_delete(data, auth: AuthContext | None, db, cfg):
    auth = require_login(auth)
    doc_id = require_id(data, "id", "documentId", label="document id")
    doc = _load(db, doc_id)
    _assert_owner(doc, auth, "delete")
    meta = {"entityType": doc.entity_type, "entityId": doc.entity_id, "documentName": doc.document_name}
    db.delete(doc)
    append_audit(db, entityType="DOCUMENT", entityId=doc_id, action="DOCUMENT_DELETE", actor=auth, meta=meta)
    return {"deleted": True, "id": doc_id}
