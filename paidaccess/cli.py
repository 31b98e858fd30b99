import json
import click
from flask.cli import with_appcontext
from paidaccess.extensions import db
from paidaccess.models.user import User
from paidaccess.billing import BillingError, EntitlementService, Reconciler, normalize_event

@click.group()
def users():
    """User management."""

@users.command("create")
@click.option("--email", required=True)
@click.option("--password", required=True)
@click.option("--name", default=None)
@click.option("--admin", is_flag=True, default=False, help="Grant access to the subscription listing")
@with_appcontext
def users_create(email, password, name, admin):
    email = email.strip().lower()
    if db.session.query(User).filter_by(email=email).count():
        raise click.ClickException("User already exists")

    user = User(email=email, name=name, is_admin=admin, is_active=True)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()

    click.echo(f"User created id={user.id} email={user.email} admin={user.is_admin}")

@click.group()
def subscriptions():
    """Subscription store ops."""

@subscriptions.command("status")
@click.argument("email")
@with_appcontext
def subscriptions_status(email):
    """Print the entitlement the app would compute for EMAIL right now."""
    result = EntitlementService(db.session).is_entitled(email)
    click.echo(json.dumps(result.to_dict(), indent=2))

@subscriptions.command("replay")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@with_appcontext
def subscriptions_replay(path):
    """
    Apply a stored webhook envelope ({"type": ..., "data": ...}) or a JSON list of them.
    Safe to repeat: reconciliation is idempotent.
    """
    with open(path, "r", encoding="utf-8") as fh:
        payload = json.load(fh)
    envelopes = payload if isinstance(payload, list) else [payload]

    reconciler = Reconciler(db.session)
    failures = 0
    for i, envelope in enumerate(envelopes):
        try:
            result = reconciler.apply(normalize_event(envelope))
        except BillingError as e:
            failures += 1
            click.echo(f"[{i}] {e.code}: {e}", err=True)
            continue
        click.echo(f"[{i}] {result.outcome.value} subscription_id={result.subscription_id}")

    if failures:
        raise click.ClickException(f"{failures} of {len(envelopes)} events failed")

def register_cli(app):
    app.cli.add_command(users)
    app.cli.add_command(subscriptions)
