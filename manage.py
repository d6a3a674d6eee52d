from portal.app import create_app, db

import click
from flask.cli import FlaskGroup
from flask_migrate import Migrate
from sqlalchemy import func

from portal.models import USER_ROLES, User
from portal.services import attendance, certificate_dispatch
from portal.shared.errors import PortalError


migrate = Migrate()


def create_portal_app():
    app = create_app()
    migrate.init_app(app, db)
    return app


cli = FlaskGroup(create_app=create_portal_app)


@cli.command("create_admin")
@click.option("--email", required=True)
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
@click.option("--name", "full_name", default="")
@click.option("--role", type=click.Choice(USER_ROLES), default="admin")
def create_admin(email: str, password: str, full_name: str, role: str):
    """Create a staff account, or reset its password if it exists."""
    user = (
        db.session.query(User)
        .filter(func.lower(User.email) == email.strip().lower())
        .one_or_none()
    )
    if user is None:
        user = User(email=email, full_name=full_name or None, role=role)
        db.session.add(user)
        action = "created"
    else:
        user.role = role
        action = "updated"
    user.set_password(password)
    db.session.commit()
    click.echo(f"{action} {user.email} role={user.role}")


@cli.command("import_attendance")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--month", type=click.IntRange(1, 12))
@click.option("--year", type=click.IntRange(2000, 2100))
def import_attendance(path: str, month: int | None, year: int | None):
    """Import a CSV/XLSX attendance sheet."""
    with open(path, "rb") as fh:
        rows = attendance.parse_attendance_file(path, fh)
    summary = attendance.import_attendance(rows, month=month, year=year).as_dict()
    counts = summary["summary"]
    click.echo(
        f"total={counts['total']} successful={counts['successful']} "
        f"failed={counts['failed']} not_found={counts['notFound']}"
    )
    for item in summary["failed"]:
        click.echo(f"failed: {item['row'].get('registrationNumber')} {item['error']}", err=True)
    for item in summary["notFound"]:
        click.echo(f"not found: {item['registrationNumber']}", err=True)


def _print_summary(summary: certificate_dispatch.DispatchSummary) -> None:
    click.echo(
        f"{summary.message}: total={summary.total} successful={summary.successful} "
        f"failed={summary.failed}"
    )
    for error in summary.errors:
        click.echo(f"failed: {error['email']} {error['error']}", err=True)


@cli.command("send_certificates")
@click.option("--event", "event_id", required=True, type=int)
def send_certificates(event_id: int):
    """Run the one-shot certificate batch for an event."""
    try:
        _print_summary(certificate_dispatch.dispatch_event_certificates(event_id))
    except PortalError as exc:
        db.session.rollback()
        raise click.ClickException(str(exc))


@cli.command("retry_certificates")
@click.option("--event", "event_id", required=True, type=int)
def retry_certificates(event_id: int):
    """Resend certificates whose delivery failed."""
    try:
        _print_summary(certificate_dispatch.retry_failed_certificates(event_id))
    except PortalError as exc:
        db.session.rollback()
        raise click.ClickException(str(exc))


@cli.command("attendance_alerts")
@click.option("--threshold", type=float, default=75.0, show_default=True)
@click.option("--department")
@click.option("--year", type=click.IntRange(1, 4))
def attendance_alerts(threshold: float, department: str | None, year: int | None):
    """Email students whose attendance is below the threshold."""
    result = attendance.send_attendance_alerts(threshold, department, year)
    click.echo(f"candidates={result['total']} sent={result['sent']} failed={result['failed']}")


if __name__ == "__main__":
    cli()
