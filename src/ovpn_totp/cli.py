"""CLI entry point for ovpn-totp."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
from rich.console import Console

from ovpn_totp import db
from ovpn_totp.config import settings
from ovpn_totp.enrollment import EnrollmentService, build_service
from ovpn_totp.errors import NotEnrolledError, TotpError

console = Console()


def _service() -> EnrollmentService:
    service = build_service(db.init_db())
    service.store.init_schema()
    return service


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL.")
def main(log_level: str | None) -> None:
    """ovpn-totp — TOTP second factor for the VPN admin panel."""
    logging.basicConfig(
        level=(log_level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )


@main.command("config")
def show_config() -> None:
    """Show effective configuration."""
    console.print("[bold]ovpn-totp configuration[/bold]")
    console.print(f"  Database: {settings.database_url.split('@')[-1]}")
    console.print(f"  TOTP required: {settings.totp_enabled}")
    console.print(f"  Issuer: {settings.totp_issuer}")
    console.print(f"  Skew window: ±{settings.totp_valid_window} step(s)")
    console.print(f"  QR size: {settings.totp_qr_size}px")
    console.print(f"  Secrets encrypted: {bool(settings.totp_master_key)}")


@main.command("init-db")
def init_db() -> None:
    """Create the totp_secrets table if missing."""
    try:
        _service()
    except (TotpError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    finally:
        db.close_db()
    console.print("[green]TOTP table ready[/green]")


@main.command()
@click.argument("username")
@click.option("--qr-out", type=click.Path(dir_okay=False, path_type=Path), help="Write the QR PNG here.")
def enroll(username: str, qr_out: Path | None) -> None:
    """Start (or restart) enrollment for USERNAME."""
    try:
        enrollment = _service().start_enroll(username)
    except (TotpError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    finally:
        db.close_db()

    console.print(f"[bold]Enrollment pending for {username}[/bold]")
    console.print(f"  Secret: {enrollment.secret}")
    console.print(f"  URI: {enrollment.provisioning_uri}")
    if qr_out is not None:
        try:
            qr_out.write_bytes(enrollment.qr_png)
        except OSError as e:
            console.print(f"[red]Could not write {qr_out}: {e.strerror}[/red]")
            sys.exit(1)
        console.print(f"  QR code written to {qr_out}")


@main.command()
@click.argument("username")
@click.argument("code")
def verify(username: str, code: str) -> None:
    """Verify CODE for USERNAME, activating a pending enrollment."""
    try:
        ok = _service().verify(username, code)
    except NotEnrolledError as e:
        console.print(f"[yellow]{e}[/yellow]")
        sys.exit(2)
    except (TotpError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    finally:
        db.close_db()

    if not ok:
        console.print("[red]Invalid code[/red]")
        sys.exit(1)
    console.print("[green]Code accepted[/green]")


@main.command()
@click.argument("username")
def status(username: str) -> None:
    """Show enrollment state for USERNAME."""
    try:
        state = _service().state(username)
    except (TotpError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    finally:
        db.close_db()
    console.print(f"{username}: {state}")


@main.command()
@click.argument("username")
@click.option("--admin", is_flag=True, help="Record as an administrative override.")
def disable(username: str, admin: bool) -> None:
    """Remove the TOTP record for USERNAME."""
    try:
        service = _service()
        if admin:
            service.admin_disable(username)
        else:
            service.disable(username)
    except (TotpError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    finally:
        db.close_db()
    console.print(f"TOTP disabled for {username}")


if __name__ == "__main__":
    main()
