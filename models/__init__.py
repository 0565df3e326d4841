from .db import db
from .enums import (
    ReservationStatus,
    InvoiceStatus,
    PaymentMethod,
    ServiceUnit,
    RefundReason,
    InvoiceItemKind,
)
from .user import User, Role, user_roles
from .audit_log import AuditLog
from .session import Session
from .branch import Branch
from .court_type import CourtType
from .court import Court
from .court_schedule import CourtSchedule
from .service import Service
from .customer import Customer
from .reservation import Reservation, BookingSlot
from .invoice import Invoice, InvoiceItem, RefundRecord
