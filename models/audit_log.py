from datetime import datetime
from models.db import db

class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=True)  # NULL for system actors (hold sweeper)
    action = db.Column(db.String(80), nullable=False)  # e.g. RESERVATION_HOLD, INVOICE_REFUND
    entity = db.Column(db.String(80), nullable=True)   # reservation, invoice, user
    entity_id = db.Column(db.String(80), nullable=True)

    ip = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)
    metadata_json = db.Column(db.Text, nullable=True)

    timestamp = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.Index("ix_audit_logs_entity", "entity", "entity_id"),
    )
