from models.db import db
from models.enums import ServiceUnit

class Service(db.Model):
    __tablename__ = "services"

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    unit = db.Column(db.Enum(ServiceUnit, native_enum=False, length=10), nullable=False, default=ServiceUnit.USE)
    unit_price = db.Column(db.Integer, nullable=False, default=0)  # smallest currency unit
    is_active = db.Column(db.Boolean, default=True, nullable=False)
