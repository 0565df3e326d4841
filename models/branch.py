from datetime import datetime
from models.db import db

class Branch(db.Model):
    __tablename__ = "branches"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    address = db.Column(db.String(255), nullable=True)

    # "HH:mm" or "HH:mm:ss"; availability falls back to config defaults when unusable
    open_time = db.Column(db.String(8), nullable=True)
    close_time = db.Column(db.String(8), nullable=True)

    # Deposit policy overrides; NULL means use the app config value
    deposit_ratio = db.Column(db.Float, nullable=True)
    cancel_window_minutes = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
