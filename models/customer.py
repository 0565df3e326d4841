from datetime import datetime
from models.db import db

class Customer(db.Model):
    __tablename__ = "customers"

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(120), nullable=False)
    phone_number = db.Column(db.String(30), nullable=True, index=True)
    email = db.Column(db.String(255), nullable=True)

    # Set when the customer also has a login account
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, unique=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
