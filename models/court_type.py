from models.db import db

class CourtType(db.Model):
    __tablename__ = "court_types"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(80), nullable=False, unique=True)  # e.g. Badminton, Tennis, Futsal
    slot_duration_minutes = db.Column(db.Integer, nullable=False, default=60)
