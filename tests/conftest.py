import pytest

from app import create_app
from config import TestConfig
from models import db
from models.branch import Branch
from models.court import Court
from models.court_type import CourtType
from models.customer import Customer
from models.enums import ServiceUnit
from models.service import Service
from models.user import Role, User
from security.password import hash_password
from tests.helpers import PASSWORD
from utils.seed import seed_roles

STAFF_ACCOUNTS = {
    "reception@example.com": "RECEPTIONIST",
    "cashier@example.com": "CASHIER",
    "manager@example.com": "MANAGER",
    "admin@example.com": "ADMIN",
}


def _add_user(email, role_name):
    user = User(email=email, password_hash=hash_password(PASSWORD, rounds=4), full_name=email.split("@")[0])
    user.roles = [Role.query.filter_by(name=role_name).one()]
    db.session.add(user)
    db.session.flush()
    return user


def _seed_catalog():
    branch = Branch(name="Central", open_time="06:00", close_time="22:00")
    other_branch = Branch(name="Riverside", open_time="07:00:00", close_time="23:00:00")
    badminton = CourtType(name="Badminton", slot_duration_minutes=60)
    db.session.add_all([branch, other_branch, badminton])
    db.session.flush()

    court_a = Court(branch_id=branch.id, court_type_id=badminton.id, name="Court A", base_hourly_price=50000)
    court_b = Court(branch_id=branch.id, court_type_id=badminton.id, name="Court B", base_hourly_price=60000)
    closed = Court(branch_id=branch.id, court_type_id=badminton.id, name="Court Z", base_hourly_price=50000, is_active=False)
    db.session.add_all([court_a, court_b, closed])

    racket = Service(branch_id=branch.id, name="Racket rental", unit=ServiceUnit.USE, unit_price=20000)
    coach = Service(branch_id=branch.id, name="Coach", unit=ServiceUnit.HOUR, unit_price=60000)
    locker = Service(branch_id=branch.id, name="Locker", unit=ServiceUnit.FREE, unit_price=0)
    elsewhere = Service(branch_id=other_branch.id, name="Shuttlecocks", unit=ServiceUnit.USE, unit_price=5000)
    db.session.add_all([racket, coach, locker, elsewhere])

    walk_in = Customer(full_name="Walk-in Guest", phone_number="0900000001")
    db.session.add(walk_in)

    customer_user = _add_user("customer@example.com", "CUSTOMER")
    member = Customer(full_name="Linh Member", phone_number="0900000002", email=customer_user.email, user_id=customer_user.id)
    other_user = _add_user("other@example.com", "CUSTOMER")
    other = Customer(full_name="Other Member", phone_number="0900000003", email=other_user.email, user_id=other_user.id)
    db.session.add_all([member, other])

    staff = {email: _add_user(email, role).id for email, role in STAFF_ACCOUNTS.items()}
    db.session.commit()

    return {
        "branch": branch.id,
        "court_a": court_a.id,
        "court_b": court_b.id,
        "closed_court": closed.id,
        "racket": racket.id,
        "coach": coach.id,
        "locker": locker.id,
        "foreign_service": elsewhere.id,
        "walk_in": walk_in.id,
        "member": member.id,
        "other_member": other.id,
        "cashier": staff["cashier@example.com"],
        "manager": staff["manager@example.com"],
    }


@pytest.fixture
def app(tmp_path):
    # a file database so worker threads share the same data
    class _Config(TestConfig):
        SQLALCHEMY_DATABASE_URI = "sqlite:///" + str(tmp_path / "courtdesk-test.db")

    app = create_app(_Config)
    with app.app_context():
        db.create_all()
        seed_roles()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ids(app):
    return _seed_catalog()


@pytest.fixture
def client(app):
    return app.test_client()

