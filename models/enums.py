import enum


class ReservationStatus(str, enum.Enum):
    HELD = "HELD"
    BOOKED = "BOOKED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"

    @property
    def is_active(self) -> bool:
        return self is not ReservationStatus.CANCELLED


class InvoiceStatus(str, enum.Enum):
    UNPAID = "UNPAID"
    PAID = "PAID"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"


class PaymentMethod(str, enum.Enum):
    COUNTER = "counter"
    BANK_TRANSFER = "bank_transfer"
    ONLINE = "online"
    CASH = "cash"
    CARD = "card"


class ServiceUnit(str, enum.Enum):
    HOUR = "HOUR"   # priced per hour of use
    USE = "USE"     # priced per use / match / session
    FREE = "FREE"   # complimentary facility


class RefundReason(str, enum.Enum):
    COURT_UNAVAILABLE = "court_unavailable"
    MAINTENANCE = "maintenance"
    CUSTOMER_CANCELLED = "customer_cancelled"
    WRONG_INVOICE = "wrong_invoice"
    OTHER = "other"


class InvoiceItemKind(str, enum.Enum):
    COURT = "COURT"
    SERVICE = "SERVICE"
