from datetime import datetime
from models.db import db

class Court(db.Model):
    __tablename__ = "courts"

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    court_type_id = db.Column(db.Integer, db.ForeignKey("court_types.id"), nullable=False)

    name = db.Column(db.String(120), nullable=False)
    base_hourly_price = db.Column(db.Integer, nullable=False, default=0)  # smallest currency unit

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    branch = db.relationship("Branch", lazy="joined")
    court_type = db.relationship("CourtType", lazy="joined")

    __table_args__ = (
        db.UniqueConstraint("branch_id", "name", name="uq_courts_branch_name"),
    )
