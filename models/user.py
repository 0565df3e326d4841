from datetime import datetime
from models.db import db

# association table for many-to-many User <-> Role
user_roles = db.Table(
    "user_roles",
    db.Column("user_id", db.Integer, db.ForeignKey("users.id"), primary_key=True),
    db.Column("role_id", db.Integer, db.ForeignKey("roles.id"), primary_key=True),
)

class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(120), nullable=True)

    # staff accounts are scoped to one branch; NULL for customers and admins
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True)

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    roles = db.relationship("Role", secondary=user_roles, back_populates="users", lazy="selectin")

    @property
    def role_names(self) -> set:
        return {r.name for r in self.roles}

class Role(db.Model):
    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), unique=True, nullable=False)  # e.g. CUSTOMER, CASHIER, MANAGER, ADMIN

    users = db.relationship("User", secondary=user_roles, back_populates="roles")
