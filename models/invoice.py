from datetime import datetime
from models.db import db
from models.enums import InvoiceStatus, InvoiceItemKind, PaymentMethod, RefundReason

class Invoice(db.Model):
    __tablename__ = "invoices"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(40), nullable=True, index=True)
    reservation_id = db.Column(db.Integer, db.ForeignKey("court_reservations.id"), nullable=False, index=True)

    # all amounts in the smallest currency unit
    court_fee = db.Column(db.Integer, nullable=False, default=0)
    service_fee = db.Column(db.Integer, nullable=False, default=0)
    subtotal = db.Column(db.Integer, nullable=False, default=0)
    discount_percent = db.Column(db.Float, nullable=False, default=0)
    discount_amount = db.Column(db.Integer, nullable=False, default=0)
    total_amount = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(
        db.Enum(InvoiceStatus, native_enum=False, length=20),
        nullable=False,
        default=InvoiceStatus.UNPAID,
        index=True,
    )
    payment_method = db.Column(db.Enum(PaymentMethod, native_enum=False, length=20), nullable=False)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    paid_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancelled_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    version = db.Column(db.Integer, nullable=False)

    items = db.relationship(
        "InvoiceItem",
        back_populates="invoice",
        order_by="InvoiceItem.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    refunds = db.relationship(
        "RefundRecord",
        back_populates="invoice",
        order_by="RefundRecord.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    reservation = db.relationship("Reservation", lazy="joined")

    __mapper_args__ = {"version_id_col": version}

    @property
    def refunded_amount(self) -> int:
        return sum(r.amount for r in self.refunds)

    @property
    def refundable_amount(self) -> int:
        return self.total_amount - self.refunded_amount


class InvoiceItem(db.Model):
    __tablename__ = "invoice_items"

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    kind = db.Column(db.Enum(InvoiceItemKind, native_enum=False, length=10), nullable=False)
    service_id = db.Column(db.Integer, db.ForeignKey("services.id"), nullable=True)

    description = db.Column(db.String(160), nullable=False)
    unit_price = db.Column(db.Integer, nullable=False, default=0)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    duration_minutes = db.Column(db.Integer, nullable=True)
    amount = db.Column(db.Integer, nullable=False, default=0)

    invoice = db.relationship("Invoice", back_populates="items")


class RefundRecord(db.Model):
    __tablename__ = "invoice_refunds"

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)

    amount = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=False)
    reason_type = db.Column(db.Enum(RefundReason, native_enum=False, length=30), nullable=False)
    actor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    invoice = db.relationship("Invoice", back_populates="refunds")
