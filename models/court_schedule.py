from datetime import datetime
from models.db import db

class CourtSchedule(db.Model):
    """
    One row per court. Every commit that claims or releases slots on the court
    bumps ``version``, so two writers that read the same schedule cannot both
    commit (compare-and-set keyed by court id).
    """
    __tablename__ = "court_schedules"

    court_id = db.Column(db.Integer, db.ForeignKey("courts.id"), primary_key=True)
    version = db.Column(db.Integer, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __mapper_args__ = {"version_id_col": version}
