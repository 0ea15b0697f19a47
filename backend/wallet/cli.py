# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/wallet/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` for migrations).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Idempotent: system person, a demo admin and a few products with barcodes.
#
# People:
# - python -m flask people sync-names
#   Refresh customer name snapshots and link unlinked names to customers.
# - python -m flask people statement 3 [--from 2024-01-01] [--to 2024-01-31] [--asc]
#   Print a person's statement with running balances.
#
# Ledger checks:
# - python -m flask ledger check-balances
#   Verify aggregate balances, per-person balances and statement closing balances agree.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Person, Product
from .models.people import ROLE_SYSTEM, ROLE_ADMIN
from .services import person_service, statement_service
from .services.errors import LedgerError
from .time_utils import format_cents, to_utc_z
from .validation import optional_datetime


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables."""
    db.create_all()
    click.echo("PASS Tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' for demo data.")


DEMO_PRODUCTS = [
    # name, price, cost, stock, barcodes, stockless, service
    ("Rice 25kg", 3500, 2800, 40, ["6001234500011"], False, False),
    ("Cooking Oil 5L", 1800, 1350, 25, ["6001234500028", "OIL-5L"], False, False),
    ("Sugar 1kg", 250, 180, 120, ["6001234500035"], False, False),
    ("Delivery Fee", 500, 0, 0, [], False, True),
    ("Custom Cake", 4000, 2500, 0, [], True, False),
]


@system_group.command('seed-demo')
@click.option('--admin-password', default='admin123', show_default=True)
@with_appcontext
def seed_demo(admin_password):
    """Create the system person, a demo admin and demo products (idempotent)."""
    if not db.session.query(Person).filter_by(role=ROLE_SYSTEM).first():
        db.session.add(Person(name="System", role=ROLE_SYSTEM))
        click.echo("PASS Created system person")

    if not db.session.query(Person).filter_by(username="admin").first():
        db.session.add(Person(
            name="Administrator",
            role=ROLE_ADMIN,
            username="admin",
            password_hash=person_service.hash_secret(admin_password),
        ))
        click.echo("PASS Created admin (username: admin)")

    for name, price, cost, stock, barcodes, stockless, service in DEMO_PRODUCTS:
        if db.session.query(Product).filter_by(name=name).first():
            click.echo(f"SKIP {name} already exists")
            continue
        product = Product(
            name=name,
            price_cents=price,
            cost_price_cents=cost,
            stock_quantity=stock,
            is_stockless=stockless,
            is_service=service,
        )
        for code in barcodes:
            product.add_barcode(code)
        db.session.add(product)
        click.echo(f"PASS Created product {name}")

    db.session.commit()
    click.echo("PASS Demo data ready.")


# =============================================================================
# PEOPLE
# =============================================================================

@click.group('people')
def people_group():
    """Customer / driver / staff commands."""


@people_group.command('sync-names')
@with_appcontext
def sync_names():
    """Reconcile customer name snapshots with the people table."""
    stats = person_service.reconcile_name_snapshots(actor_name="CLI")
    click.echo(
        f"PASS refreshed={stats['refreshed']} linked={stats['linked']} "
        f"created={stats['created']} skipped_ambiguous={stats['skipped_ambiguous']}"
    )


@people_group.command('statement')
@click.argument('person_id', type=int)
@click.option('--from', 'from_raw', default=None, help='ISO-8601 start of window')
@click.option('--to', 'to_raw', default=None, help='ISO-8601 end of window')
@click.option('--asc', is_flag=True, help='Oldest first')
@with_appcontext
def print_statement(person_id, from_raw, to_raw, asc):
    """Print a person's statement."""
    try:
        statement = statement_service.build_statement(
            person_id,
            from_date=optional_datetime(from_raw, "--from"),
            to_date=optional_datetime(to_raw, "--to", end_of_day=True),
            newest_first=not asc,
        )
    except LedgerError as e:
        click.echo(f"FAIL {e}")
        return

    label = current_app.config.get("CURRENCY_LABEL", "")
    click.echo("\n" + "="*90)
    click.echo(f"Statement for {statement.person_name} (#{statement.person_id})")
    click.echo(f"Opening balance: {format_cents(statement.opening_balance_cents, label)}")
    click.echo("="*90)
    click.echo(f"{'Date':<22} {'Description':<36} {'Amount':>14} {'Balance':>14}")
    click.echo("-"*90)
    for item in statement.items:
        click.echo(
            f"{to_utc_z(item.date):<22} {item.description:<36} "
            f"{format_cents(item.amount_cents):>14} {format_cents(item.running_balance_cents):>14}"
        )
    click.echo("-"*90)
    click.echo(f"Closing balance: {format_cents(statement.closing_balance_cents, label)}")
    click.echo("="*90 + "\n")


# =============================================================================
# LEDGER CHECKS
# =============================================================================

@click.group('ledger')
def ledger_group():
    """Ledger consistency checks."""


@ledger_group.command('check-balances')
@with_appcontext
def check_balances():
    """
    Verify the balance invariant for every person.

    Compares the aggregate (full scan) balance, the per-person balance and
    the closing balance of the full statement.
    """
    failures = 0
    summaries = person_service.list_people()
    for summary in summaries:
        person = summary["person"]
        aggregate = summary["balance_cents"]
        single = person_service.person_balance_cents(person.id)
        closing = statement_service.build_statement(person.id).closing_balance_cents

        if aggregate == single == closing:
            continue
        failures += 1
        click.echo(
            f"FAIL {person.name} (#{person.id}): aggregate={aggregate} "
            f"per_person={single} statement={closing}"
        )

    if failures:
        click.echo(f"FAIL {failures} of {len(summaries)} people have inconsistent balances")
        raise SystemExit(1)
    click.echo(f"PASS {len(summaries)} balances consistent")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(people_group)
    app.cli.add_command(ledger_group)
