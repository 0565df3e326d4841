import logging

import click
from flask import Flask, jsonify
from flask_migrate import Migrate
from sqlalchemy import inspect

from config import Config
from routes import health_bp, auth_bp, booking_bp, court_bp, invoices_bp, audit_bp

from models import db
from models.customer import Customer
from models.user import User, Role
from security.csrf import csrf_protect
from security.password import hash_password
from services.bookings import expire_stale_holds
from services.errors import BookingError
from services.sweeper import start_sweeper
from utils.seed import seed_roles, DEFAULT_ROLES
from utils.auth_context import load_current_user


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(booking_bp)
    app.register_blueprint(court_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(audit_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    # Seed default roles once the schema exists (safe & idempotent)
    with app.app_context():
        if inspect(db.engine).has_table("roles"):
            seed_roles()

    @app.before_request
    def _load_user():
        load_current_user()

    # runs after _load_user so g.user is set
    app.before_request(csrf_protect)

    @app.errorhandler(BookingError)
    def _booking_error(e):
        # services roll back before raising; this clears anything a route staged
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    if not app.config.get("TESTING"):
        app.extensions["hold_sweeper"] = start_sweeper(app)

    return app


#-------------------------

def register_cli(app):
    @app.cli.command("create-user")
    @click.argument("email")
    @click.argument("password")
    @click.option("--role", "roles", multiple=True, type=click.Choice(DEFAULT_ROLES), default=["CUSTOMER"])
    @click.option("--name", "full_name", default=None)
    @click.option("--branch-id", type=int, default=None)
    def create_user(email, password, roles, full_name, branch_id):
        """Create a login account (customers also get a customer record)."""
        email = email.strip().lower()
        if User.query.filter_by(email=email).first():
            click.echo("User already exists")
            return

        seed_roles()
        user = User(email=email, password_hash=hash_password(password), full_name=full_name, branch_id=branch_id)
        user.roles = Role.query.filter(Role.name.in_(roles)).all()
        db.session.add(user)
        db.session.flush()
        if "CUSTOMER" in roles:
            db.session.add(Customer(full_name=full_name or email, email=email, user_id=user.id))
        db.session.commit()
        click.echo(f"{user.email} created with roles {', '.join(sorted(roles))}")

    @app.cli.command("grant-role")
    @click.argument("email")
    @click.argument("role", type=click.Choice(DEFAULT_ROLES))
    def grant_role(email, role):
        """Add a role to a user by email (bootstrap)."""
        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user:
            click.echo("User not found")
            return

        seed_roles()
        role_row = Role.query.filter_by(name=role).first()
        if role_row not in user.roles:
            user.roles.append(role_row)
            db.session.commit()

        click.echo(f"{user.email} granted {role}")

    @app.cli.command("expire-holds")
    def expire_holds():
        """Release holds whose time-to-live has lapsed."""
        released = expire_stale_holds()
        click.echo(f"Released {len(released)} expired hold(s)")

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
