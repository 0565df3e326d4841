from datetime import datetime
from models.db import db
from models.enums import ReservationStatus, PaymentMethod

class Reservation(db.Model):
    __tablename__ = "court_reservations"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(40), nullable=False, index=True)  # display/search only, not unique

    court_id = db.Column(db.Integer, db.ForeignKey("courts.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    status = db.Column(
        db.Enum(ReservationStatus, native_enum=False, length=20),
        nullable=False,
        default=ReservationStatus.HELD,
        index=True,
    )
    payment_method = db.Column(db.Enum(PaymentMethod, native_enum=False, length=20), nullable=False)
    deposit_amount = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    hold_expires_at = db.Column(db.DateTime, nullable=True)
    confirmed_at = db.Column(db.DateTime, nullable=True)
    paid_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    version = db.Column(db.Integer, nullable=False)

    slots = db.relationship(
        "BookingSlot",
        back_populates="reservation",
        order_by="BookingSlot.start_time",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    court = db.relationship("Court", lazy="joined")
    customer = db.relationship("Customer", lazy="joined")

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_active(self) -> bool:
        return ReservationStatus(self.status).is_active

    @property
    def starts_at(self):
        return self.slots[0].start_time if self.slots else None

    @property
    def ends_at(self):
        return self.slots[-1].end_time if self.slots else None


class BookingSlot(db.Model):
    __tablename__ = "booking_slots"

    id = db.Column(db.Integer, primary_key=True)
    reservation_id = db.Column(db.Integer, db.ForeignKey("court_reservations.id"), nullable=False, index=True)

    # denormalized so overlap checks never need the reservation join for the range filter
    court_id = db.Column(db.Integer, db.ForeignKey("courts.id"), nullable=False)
    start_time = db.Column(db.DateTime, nullable=False)
    end_time = db.Column(db.DateTime, nullable=False)

    reservation = db.relationship("Reservation", back_populates="slots")

    __table_args__ = (
        db.Index("ix_booking_slots_court_start", "court_id", "start_time"),
    )
