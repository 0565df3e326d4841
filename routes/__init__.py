from .health import health_bp
from .auth import auth_bp
from .booking import booking_bp
from .courts import court_bp
from .invoices import invoices_bp
from .audit_logs import audit_bp
