"""Click CLI for webhook signing and verification, config checks and log integrity."""

from __future__ import annotations

import json
import sys
import time
from pathlib import Path
from typing import BinaryIO

import click

from src.audit.logger import validate_event_chain
from src.config import ConfigurationError, GatewaySettings, validate_settings
from src.ratelimit.policies import PolicyTable, load_policies_from_file
from src.webhook.authenticator import (
    DEFAULT_TOLERANCE_SECONDS,
    compute_signature,
    is_timestamp_fresh,
    is_valid_envelope_shape,
    verify_signature,
)


@click.group()
def cli() -> None:
    """notegate gateway tooling."""


@cli.command()
@click.argument("body_file", type=click.File("rb"))
@click.option("--secret", required=True, envvar="CLERK_WEBHOOK_SECRET", help="Webhook secret.")
@click.option("--timestamp", type=int, default=None, help="Unix seconds (default: now).")
def sign(body_file: BinaryIO, secret: str, timestamp: int | None) -> None:
    """Print a clerk-signature header for BODY_FILE."""
    body = body_file.read()
    ts = str(timestamp if timestamp is not None else int(time.time()))
    click.echo(f"t={ts},v1={compute_signature(body, ts, secret)}")


@cli.command()
@click.argument("body_file", type=click.File("rb"))
@click.option("--secret", required=True, envvar="CLERK_WEBHOOK_SECRET", help="Webhook secret.")
@click.option("--header", "signature_header", required=True, help="clerk-signature value.")
@click.option("--tolerance", type=int, default=DEFAULT_TOLERANCE_SECONDS, show_default=True)
def verify(
    body_file: BinaryIO, secret: str, signature_header: str, tolerance: int,
) -> None:
    """Run every webhook check against BODY_FILE and report each result."""
    body = body_file.read()
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        payload = None
    checks = {
        "signature": verify_signature(body, signature_header, secret),
        "timestamp_fresh": is_timestamp_fresh(signature_header, tolerance),
        "shape": is_valid_envelope_shape(payload),
    }
    click.echo(json.dumps(checks, indent=2))
    if not all(checks.values()):
        sys.exit(1)


@cli.command()
@click.option("--file", "policies_path", default=None, help="Rate policy JSON overrides.")
def policies(policies_path: str | None) -> None:
    """Print the effective rate policy table."""
    table = load_policies_from_file(policies_path) if policies_path else PolicyTable()
    click.echo(json.dumps(table.to_dict(), indent=2))


@cli.command("check-config")
def check_config() -> None:
    """Validate gateway configuration from the environment."""
    try:
        settings = GatewaySettings.from_env()
    except ConfigurationError as e:
        for error in e.errors:
            click.echo(f"error: {error}", err=True)
        sys.exit(1)
    for warning in validate_settings(settings).warnings:
        click.echo(f"warning: {warning}", err=True)
    click.echo(f"Configuration valid ({settings.environment})")


@cli.command("verify-log")
@click.argument(
    "log_path", type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
def verify_log(log_path: Path) -> None:
    """Check the hash chain of a security event log."""
    result = validate_event_chain(log_path)
    if not result.valid:
        click.echo(
            f"Security log hash chain broken at line {result.broken_at_line}", err=True,
        )
        sys.exit(1)
    click.echo(f"Security log chain intact: {log_path}")
