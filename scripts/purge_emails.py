import os
import sys

import click

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if BASE_DIR not in sys.path:
    sys.path.insert(0, BASE_DIR)

from tagdash import create_app, db
from tagdash.models import Email, EmailTag


@click.command()
@click.option('--keep-tagged/--all', default=True, help='Keep emails that still carry tags.')
def purge_emails(keep_tagged):
    """Delete local email rows (star state) and, with --all, their tag links."""
    app = create_app()
    with app.app_context():
        query = Email.query
        if keep_tagged:
            tagged = db.session.query(EmailTag.email_id).distinct()
            query = query.filter(Email.is_starred.is_(False), ~Email.email_id.in_(tagged))
            links = 0
        else:
            links = EmailTag.query.delete()
        deleted = query.delete(synchronize_session=False)
        db.session.commit()
        click.echo(f'Deleted {deleted} emails and {links} tag links')


if __name__ == '__main__':
    purge_emails()
