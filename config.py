import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as courtdesk.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "courtdesk.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Session cookie name for our auth token
    AUTH_COOKIE_NAME = "courtdesk_session"

    # 8 hours session lifetime
    SESSION_LIFETIME_SECONDS = 8 * 60 * 60

    # Idle timeout: 20 minutes
    IDLE_TIMEOUT_SECONDS = 20 * 60
    # last_seen_at is rewritten at most this often
    SESSION_TOUCH_SECONDS = 60

    # Session/cookie security defaults
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = False  # set True when using HTTPS

    # Holds: unconfirmed reservations are released after this many minutes
    HOLD_TTL_MINUTES = int(os.getenv("HOLD_TTL_MINUTES", "15"))
    # Background sweep interval; 0 disables the sweeper thread
    HOLD_SWEEP_SECONDS = int(os.getenv("HOLD_SWEEP_SECONDS", "60"))

    # Deposit policy (branch rows override these)
    DEPOSIT_RATIO = float(os.getenv("DEPOSIT_RATIO", "0.5"))
    CANCEL_WINDOW_MINUTES = int(os.getenv("CANCEL_WINDOW_MINUTES", "30"))

    # Fallback operating hours when a branch has none (or malformed ones)
    DEFAULT_OPEN_TIME = os.getenv("DEFAULT_OPEN_TIME", "06:00")
    DEFAULT_CLOSE_TIME = os.getenv("DEFAULT_CLOSE_TIME", "22:00")
    DEFAULT_SLOT_MINUTES = 60

    # Human-facing booking codes: VS-{court}-{YYYYMMDD}-{random}
    BOOKING_CODE_PREFIX = os.getenv("BOOKING_CODE_PREFIX", "VS")

    # Optimistic-concurrency retries for lost compare-and-set writes
    TXN_RETRY_ATTEMPTS = int(os.getenv("TXN_RETRY_ATTEMPTS", "3"))

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Basic app settings
    DEBUG = False


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    HOLD_SWEEP_SECONDS = 0
    LOG_LEVEL = "WARNING"
