from flask import Flask
from config import Config
from routes import health_bp, auth_bp, availability_bp, booking_bp, coach_bp, admin_bp, wallet_bp

from models import db
from flask_migrate import Migrate
from services.notifications import EmailNotifier
from services.wallet import SqlWalletLedger
from utils.seed import seed_roles
from utils.auth_context import load_current_user
from security.csrf import csrf_failure


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(availability_bp)
    app.register_blueprint(booking_bp)
    app.register_blueprint(coach_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(wallet_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    # Collaborators the booking engine calls out to
    app.extensions["wallet_ledger"] = SqlWalletLedger()
    app.extensions["notifier"] = EmailNotifier()

    # Seed default roles at startup (idempotent); needs the schema in place
    if app.config.get("SEED_ROLES_ON_STARTUP", True):
        with app.app_context():
            seed_roles()

    @app.before_request
    def _load_user():
        load_current_user()

    # cookie-authenticated writes must echo the CSRF cookie
    app.before_request(csrf_failure)

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app

#-------------------------
import click
from models.user import User, Role
from services.availability import bulk_create_availability, create_location


def register_cli(app):
    @app.cli.command("set-role")
    @click.argument("email")
    @click.argument("role")
    def set_role(email, role):
        """Grant ROLE (STUDENT, COACH or ADMIN) to a user by email."""
        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user:
            raise click.ClickException("User not found")

        role_row = Role.query.filter_by(name=role.strip().upper()).first()
        if not role_row:
            raise click.ClickException(f"Unknown role {role!r}")

        if role_row not in user.roles:
            user.roles.append(role_row)
            db.session.commit()

        click.echo(f"{user.email} now has roles: {', '.join(sorted(user.role_names))}")

    @app.cli.command("create-location")
    @click.argument("name")
    @click.option("--address", default=None)
    def create_location_cmd(name, address):
        """Add a coaching location."""
        location, err = create_location(name, address)
        if err:
            raise click.ClickException(err.message)
        click.echo(f"Created location {location.id}: {location.name}")

    @app.cli.command("bulk-availability")
    @click.option("--location-id", "location_ids", type=int, multiple=True, required=True)
    @click.option("--start-date", required=True, help="YYYY-MM-DD, academy local")
    @click.option("--end-date", required=True, help="YYYY-MM-DD, academy local")
    @click.option("--days", required=True, help="comma separated, e.g. monday,wednesday")
    @click.option("--from", "window_start", required=True, help="HH:MM")
    @click.option("--to", "window_end", required=True, help="HH:MM")
    @click.option("--service", default=None)
    @click.option("--max-capacity", type=int, default=None)
    def bulk_availability_cmd(location_ids, start_date, end_date, days, window_start, window_end, service, max_capacity):
        """Create slot rows for a date range, the same way the admin endpoint does."""
        result, err = bulk_create_availability(
            list(location_ids),
            start_date,
            end_date,
            [d for d in days.split(",") if d.strip()],
            window_start,
            window_end,
            service_name=service,
            max_capacity=max_capacity,
        )
        if err:
            raise click.ClickException(err.message)
        click.echo(f"Created {result['created']} slots, skipped {result['skipped']}")

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
