import click

import housekeeping_service
import room_management
import tentative_service
from extensions import db
from init_data import create_admin, create_initial_data


def register_commands(app):

    @app.cli.command('init-db')
    def init_db():
        """Create tables and seed the defaults."""
        db.create_all()
        create_initial_data()
        click.echo('Database initialized')

    @app.cli.command('create-admin')
    @click.argument('username')
    @click.argument('email')
    @click.password_option()
    @click.option('--role', default='admin',
                  type=click.Choice(['admin', 'manager', 'receptionist', 'housekeeping']))
    @click.option('--full-name', default=None)
    def create_admin_command(username, email, password, role, full_name):
        """Create a staff account or reset an existing one."""
        if len(password) < 8:
            raise click.BadParameter('Password must be at least 8 characters long.', param_hint='password')
        user, created = create_admin(username, email, password, role=role, full_name=full_name)
        db.session.commit()
        click.echo(f"{'Created' if created else 'Updated'} {user.role} account: {user.username}")

    @app.cli.command('expire-tentative')
    def expire_tentative():
        """Mark tentative bookings past their hold as expired."""
        expired = tentative_service.expire_overdue()
        db.session.commit()
        click.echo(f'Expired {len(expired)} tentative booking(s)')

    @app.cli.command('release-stale-rooms')
    @click.option('--hours', default=room_management.STALE_CLEANING_HOURS, show_default=True, type=int)
    def release_stale_rooms(hours):
        """Release rooms stuck in cleaning with no open work."""
        released = room_management.auto_release_stale_cleaning_rooms(hours=hours)
        db.session.commit()
        click.echo(f"Released {len(released)} room(s){': ' + ', '.join(released) if released else ''}")

    @app.cli.command('create-recurring')
    def create_recurring():
        """Spawn the next occurrence of recurring housekeeping work."""
        created = housekeeping_service.create_recurring_assignments()
        db.session.commit()
        click.echo(f'Created {len(created)} recurring assignment(s)')

    @app.cli.command('create-checkout-tasks')
    def create_checkout_tasks():
        """Create cleanup assignments for today's departures."""
        created = housekeeping_service.auto_create_checkout_assignments()
        db.session.commit()
        click.echo(f'Created {len(created)} checkout assignment(s)')
