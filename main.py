"""
Student Portal Command-Line Entry Point.

Bootstraps the dependency graph via ``create_services()``, restores the
persisted session and runs one command against the backend.  Every
subsystem is wired here; there are no module-level session globals.

Usage::

    python main.py login
    python main.py fetch attendance
    python main.py logout
"""

from __future__ import annotations

import asyncio
import json
import sys
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

import click
from pydantic import ValidationError

from student_portal.config import get_config
from student_portal.exceptions import AuthenticationError, PortalClientError
from student_portal.guards import require_session
from student_portal.logger import StructuredLogger, get_logger
from student_portal.models import ApiResult, LeaveApplication
from student_portal.services import Services, create_services

# CLI view name -> StudentApi method.
VIEWS: dict[str, str] = {
    "dashboard": "get_dashboard",
    "attendance": "get_attendance",
    "internal-marks": "get_internal_marks",
    "certificates": "get_certificates",
    "leave-requests": "get_leave_requests",
    "timetable": "get_timetable",
    "study-materials": "get_study_materials",
    "assignments": "get_assignments",
    "notifications": "get_notifications",
    "announcements": "get_announcements",
    "profile": "get_profile",
}

Action = Callable[[Services], Awaitable[None]]


def _run(action: Action) -> None:
    """Wire the services, restore the session, run *action*, clean up."""
    logger: StructuredLogger = get_logger("main")

    async def _main() -> None:
        services = create_services(get_config())
        try:
            services.session_context.restore()
            await action(services)
        finally:
            await services.aclose()

    try:
        asyncio.run(_main())
    except AuthenticationError as exc:
        raise click.ClickException(f"{exc.message} Run: main.py login") from exc
    except PortalClientError as exc:
        logger.error("Command failed: %s", exc.message, extra={"details": exc.details})
        raise click.ClickException(exc.message) from exc


def _echo_result(result: ApiResult[Any]) -> None:
    if not result.ok:
        raise click.ClickException(result.message or f"Request failed ({result.outcome}).")
    payload = result.data if result.data is not None else result.body
    click.echo(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


@click.group(
    name="student-portal",
    help="Student Portal - command-line client for the student dashboard backend",
)
def cli() -> None:
    """Main CLI entry point"""


@cli.command(help="Sign in with your portal credentials")
@click.option("--username", prompt=True)
@click.option("--password", prompt=True, hide_input=True)
def login(username: str, password: str) -> None:
    async def action(services: Services) -> None:
        result = await services.session_context.login(username, password)
        if result.otp_required:
            code = click.prompt("Verification code")
            result = await services.session_context.verify_otp(code)
        if not result.success or result.user is None:
            raise click.ClickException(result.error_message or "Login failed.")
        click.echo(f"Signed in as {result.user.username}.")

    _run(action)


@cli.command(help="Sign out and forget the stored session")
def logout() -> None:
    async def action(services: Services) -> None:
        await services.session_context.logout()
        click.echo("Signed out.")

    _run(action)


@cli.command(help="Show the signed-in student")
def whoami() -> None:
    async def action(services: Services) -> None:
        @require_session(services.session)
        def show() -> None:
            user = services.session.get_current_user()
            click.echo(f"{user.username} <{user.email}> ({user.role})")
            for label, value in (
                ("Department", user.department),
                ("Semester", user.semester),
                ("Section", user.section),
            ):
                if value is not None:
                    click.echo(f"  {label}: {value}")

        show()

    _run(action)


@cli.command(help="Fetch one of the student views as JSON")
@click.argument("view", type=click.Choice(sorted(VIEWS)))
def fetch(view: str) -> None:
    async def action(services: Services) -> None:
        @require_session(services.session)
        async def load() -> ApiResult[Any]:
            return await getattr(services.student_api, VIEWS[view])()

        _echo_result(await load())

    _run(action)


@cli.command(name="apply-leave", help="Submit a leave request")
@click.option("--start", "start", required=True, type=click.DateTime(formats=["%Y-%m-%d"]))
@click.option("--end", "end", required=True, type=click.DateTime(formats=["%Y-%m-%d"]))
@click.option("--reason", required=True)
def apply_leave(start: datetime, end: datetime, reason: str) -> None:
    try:
        application = LeaveApplication(
            start_date=start.date(), end_date=end.date(), reason=reason,
        )
    except ValidationError as exc:
        raise click.BadParameter(exc.errors()[0]["msg"]) from exc

    async def action(services: Services) -> None:
        @require_session(services.session)
        async def submit() -> ApiResult[Any]:
            return await services.student_api.apply_leave(application)

        _echo_result(await submit())

    _run(action)


@cli.command(name="set-base-url", help="Point the client at another backend")
@click.argument("url")
def set_base_url(url: str) -> None:
    async def action(services: Services) -> None:
        try:
            persisted = services.settings.set_api_base_url(url)
        except ValueError as exc:
            raise click.BadParameter(str(exc), param_hint="URL") from exc
        suffix = "" if persisted else " (not persisted: local storage unavailable)"
        click.echo(f"Backend set to {services.settings.get_api_base_url()}{suffix}")

    _run(action)


def main(argv: Optional[list[str]] = None) -> None:
    cli.main(args=argv, prog_name="student-portal")


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        sys.exit(130)
