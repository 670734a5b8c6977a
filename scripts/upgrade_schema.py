import os
import sys

import click
from sqlalchemy import inspect, text

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if BASE_DIR not in sys.path:
    sys.path.insert(0, BASE_DIR)

from tagdash import create_app, db

# Columns added after the first release: table -> [(column, DDL type)]
ADDED_COLUMNS = {
    'users': [
        ('granted_scopes', "TEXT DEFAULT ''"),
    ],
    'email_tags': [
        ('tagged_at', 'DATETIME'),
    ],
    'tags': [
        ('updated_at', 'DATETIME'),
    ],
}


def ensure_columns(engine):
    inspector = inspect(engine)
    tables = set(inspector.get_table_names())
    for table, columns in ADDED_COLUMNS.items():
        if table not in tables:
            continue
        existing = {col['name'] for col in inspector.get_columns(table)}
        for name, ddl in columns:
            if name in existing:
                click.echo(f'{table}.{name} already exists.')
                continue
            click.echo(f'Adding {table}.{name} column...')
            with engine.begin() as conn:
                conn.execute(text(f'ALTER TABLE {table} ADD COLUMN {name} {ddl}'))
            if table == 'email_tags' and name == 'tagged_at':
                with engine.begin() as conn:
                    conn.execute(text('UPDATE email_tags SET tagged_at = created_at WHERE tagged_at IS NULL'))


@click.command()
def upgrade_schema():
    """Ensure new tables/columns exist without requiring Alembic."""
    app = create_app()
    with app.app_context():
        ensure_columns(db.engine)

        click.echo('Ensuring tables exist...')
        db.create_all()
        click.echo('Schema upgrade complete.')


if __name__ == '__main__':
    upgrade_schema()
