# projectstore/commands.py
from collections import Counter

import click
from flask.cli import with_appcontext

from app import db
from .context import get_store
from .exceptions import CatalogLoadError
from .models import PaymentRecord


@click.group(name='projectstore')
def projectstore_cli():
    """Commands for the Project Store."""
    pass


@projectstore_cli.command('init-db')
@with_appcontext
def init_db_command():
    """Creates the project store database tables."""
    db.create_all()
    click.echo('Initialized the project store database.')


@projectstore_cli.command('check-catalog')
@with_appcontext
def check_catalog_command():
    """Fetches and normalizes the catalog, then prints a summary."""
    try:
        result = get_store().refresh_catalog()
    except CatalogLoadError as e:
        raise click.ClickException(f'Catalog could not be loaded: {e}')

    click.echo(f'Loaded {len(result.projects)} projects ({result.skipped} rows skipped).')
    for school, count in Counter(p.school for p in result.projects).most_common():
        click.echo(f'  {count:>4}  {school}')


@projectstore_cli.command('payments')
@with_appcontext
@click.option('--email', default=None, help='Only show payments made with this email.')
@click.option('--limit', default=20, show_default=True, help='Number of rows to show.')
def payments_command(email, limit):
    """Lists recorded payments, newest first."""
    query = PaymentRecord.query
    if email:
        query = query.filter_by(customer_email=email)
    records = query.order_by(PaymentRecord.created_at.desc()).limit(limit).all()
    if not records:
        click.echo('No payments recorded.')
        return
    for record in records:
        status = 'verified' if record.verified else 'client'
        click.echo(f'{record.created_at:%Y-%m-%d %H:%M}  {record.reference}  {record.project_id}  '
                   f'{record.amount}  {status}  {record.customer_email or "-"}')


def init_app(app):
    """Register CLI commands with the Flask app."""
    app.cli.add_command(projectstore_cli)
