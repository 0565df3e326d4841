import json
from flask import request, has_request_context
from models import db
from models.audit_log import AuditLog

def log_event(action: str, user_id=None, entity=None, entity_id=None, metadata=None, commit: bool = False):
    """
    Stages an audit row in the current session. Service operations leave
    ``commit`` off so the row lands in the same transaction as the change it
    describes (and disappears with it on rollback).
    """
    ip = None
    user_agent = None
    if has_request_context():
        ip = request.headers.get("X-Forwarded-For", request.remote_addr)
        user_agent = (request.headers.get("User-Agent") or "")[:255] or None

    row = AuditLog(
        user_id=user_id,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        ip=ip,
        user_agent=user_agent,
        metadata_json=json.dumps(metadata, default=str) if metadata else None
    )
    db.session.add(row)
    if commit:
        db.session.commit()
    return row
