import os
import sys

import click

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if BASE_DIR not in sys.path:
    sys.path.insert(0, BASE_DIR)

from tagdash import create_app
from tagdash.models import User
from tagdash.services.tag_store import TagStore


@click.command()
@click.option('--email', default=None, help='Only seed this user.')
def seed_default_tags(email):
    """Give every user without tags the starter pin and priority tags."""
    app = create_app()
    with app.app_context():
        query = User.query
        if email:
            query = query.filter_by(email=email)
        total = 0
        for user in query.all():
            created = TagStore(user.id).seed_default_tags()
            if created:
                click.echo(f'Seeded {created} tags for {user.email}')
            total += created
        click.echo(f'Done, {total} tags created.')


if __name__ == '__main__':
    seed_default_tags()
