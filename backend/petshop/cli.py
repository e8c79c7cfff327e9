# Overview: Flask CLI command groups for bootstrap and inventory maintenance.

# backend/petshop/cli.py
# Commands (set FLASK_APP=wsgi.py, run from the backend directory):
#
# - flask system init [--company "Name"] [--nif 500000000] [--store-code LIS01]
#   Idempotent bootstrap: company, store and an owner user.
# - flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - flask users create --company-id ID --username NAME --password PW --role staff [--role manager]
# - flask inventory receive --product-id ID --quantity N [--store-id ID] [--note TEXT]
# - flask reservations release-expired [--dry-run]
#   Release active reservations whose expires_at has passed.

import click
from flask.cli import with_appcontext

from .errors import ServiceError
from .extensions import db
from .models import Company, Store, User
from .models.auth import ALL_ROLES, ROLE_OWNER

CLI_ACTOR = "cli"


@click.group("system")
def system_group():
    """System bootstrap and repair."""


@system_group.command("init")
@click.option("--company", "company_name", default="Default Petshop", help="Company name")
@click.option("--nif", default=None, help="Company tax id, required to issue invoices")
@click.option("--store-name", default="Main Store", help="Store name")
@click.option("--store-code", default="MAIN", help="Store code used in invoice numbers")
@click.option("--owner-username", default="owner", help="Owner username")
@click.option("--owner-password", default="Password123!", help="Owner password")
@with_appcontext
def init_system(company_name, nif, store_name, store_code, owner_username, owner_password):
    """Create the tables, default company, store and owner user if missing."""
    from .services import auth_service

    db.create_all()

    company = db.session.query(Company).filter_by(name=company_name).first()
    if company is None:
        company = Company(name=company_name, nif=nif)
        db.session.add(company)
        db.session.commit()
        click.echo(f"PASS Created company: {company.name} (ID: {company.id})")
    else:
        click.echo(f"PASS Using existing company: {company.name} (ID: {company.id})")

    store = db.session.query(Store).filter_by(company_id=company.id, code=store_code).first()
    if store is None:
        store = Store(company_id=company.id, name=store_name, code=store_code)
        db.session.add(store)
        db.session.commit()
        click.echo(f"PASS Created store: {store.name} (ID: {store.id}, code {store.code})")
    else:
        click.echo(f"PASS Using existing store: {store.name} (ID: {store.id})")

    existing = db.session.query(User).filter_by(company_id=company.id, username=owner_username).first()
    if existing is not None:
        click.echo(f"WARN  User '{owner_username}' already exists, skipping...")
    else:
        try:
            user = auth_service.create_user(
                company_id=company.id,
                username=owner_username,
                password=owner_password,
                roles=[ROLE_OWNER],
                store_id=store.id,
            )
            click.echo(f"PASS Created owner user: {user.username} (ID: {user.id})")
        except ServiceError as e:
            click.echo(f"FAIL Could not create owner user: {e.message}")

    click.echo("DONE System initialized. Change the default password in production!")


@system_group.command("reset-db")
@click.option("--yes", is_flag=True, help="Skip confirmation")
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

    click.echo("PASS Database reset complete. Run 'flask system init' to initialize.")


@click.group("users")
def users_group():
    """User management."""


@users_group.command("create")
@click.option("--company-id", required=True)
@click.option("--username", prompt=True)
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
@click.option("--role", "roles", multiple=True, type=click.Choice(ALL_ROLES), default=("staff",))
@click.option("--email", default=None)
@click.option("--full-name", default=None)
@click.option("--store-id", default=None)
@with_appcontext
def create_user_cmd(company_id, username, password, roles, email, full_name, store_id):
    from .services import auth_service

    try:
        user = auth_service.create_user(
            company_id=company_id,
            username=username,
            password=password,
            roles=list(roles),
            email=email,
            full_name=full_name,
            store_id=store_id,
        )
    except ServiceError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Created user: {user.username} (ID: {user.id}) roles={','.join(sorted(user.role_set))}")


@click.group("inventory")
def inventory_group():
    """Stock operations."""


@inventory_group.command("receive")
@click.option("--product-id", required=True)
@click.option("--quantity", required=True, type=int)
@click.option("--store-id", default=None, help="Location the stock is received into")
@click.option("--reference", default=None, help="Purchase order or delivery reference")
@click.option("--note", default=None)
@with_appcontext
def receive_cmd(product_id, quantity, store_id, reference, note):
    from .services import stock_service

    try:
        movement = stock_service.receive_stock(
            product_id=product_id,
            quantity=quantity,
            performed_by=CLI_ACTOR,
            location_id=store_id,
            reference_id=reference,
            note=note,
        )
    except ServiceError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Received {quantity} -> stock now {movement.resulting_stock}")


@click.group("reservations")
def reservations_group():
    """Reservation maintenance."""


@reservations_group.command("release-expired")
@click.option("--dry-run", is_flag=True, help="List the expired reservations without releasing them")
@with_appcontext
def release_expired_cmd(dry_run):
    """Release active reservations whose expires_at has passed."""
    from .services import reservation_service

    reservations = reservation_service.release_expired_reservations(performed_by=CLI_ACTOR, dry_run=dry_run)
    verb = "Would release" if dry_run else "Released"
    for r in reservations:
        click.echo(f"  {r.id} product={r.product_id} qty={r.quantity} owner={r.reserved_for_type}:{r.reserved_for_id}")
    click.echo(f"{verb} {len(reservations)} expired reservation(s)")


def register_commands(app):
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(reservations_group)
