# cli.py - maintenance commands, run with `flask --app wsgi <command>`
import click
from flask import current_app

from extensions import db
from models import User
from commission.rates import CommissionRateHelper
from commission.purchases import PurchaseHelper
from commission.ledger import LedgerHelper, unit_of_work


def register_commands(app):

    @app.cli.command("seed-commissions")
    @click.option("--reset", is_flag=True, help="Overwrite existing levels with the default rates.")
    def seed_commissions(reset):
        """Create the default level 1-5 commission rates."""
        settings = CommissionRateHelper.seed_defaults(reset=reset)
        for setting in settings:
            click.echo(f"Level {setting.level}: {setting.rate}% ({'active' if setting.is_active else 'inactive'})")

    @app.cli.command("seed-plans")
    def seed_plans():
        """Create the default membership plans."""
        for plan in PurchaseHelper.seed_plans():
            click.echo(f"{plan.name}: {plan.price} (min withdrawal {plan.minimum_withdrawal})")

    @app.cli.command("make-admin")
    @click.argument("email")
    def make_admin(email):
        """Promote an existing user to admin."""
        user = User.query.filter_by(email=email.strip().lower()).first()
        if user is None:
            raise click.ClickException(f"No user with email {email}")
        user.role = "admin"
        db.session.commit()
        current_app.logger.info(f"[CLI] user {user.id} promoted to admin")
        click.echo(f"User (id={user.id}, email={user.email}) is now admin.")

    @app.cli.command("audit-balances")
    @click.option("--fix", is_flag=True, help="Rebuild drifted users' cached balances from the ledger.")
    def audit_balances(fix):
        """Compare cached user balances with the ledger."""
        drift = LedgerHelper.audit_balances()
        if not drift:
            click.echo("All cached balances match the ledger.")
            return

        for entry in drift:
            click.echo(f"User {entry['userId']}: cached={entry['cached']} ledger={entry['ledger']}")

        if fix:
            with unit_of_work():
                for entry in drift:
                    LedgerHelper.rebuild_cached_balances(entry["userId"])
            click.echo(f"Rebuilt {len(drift)} user(s).")
