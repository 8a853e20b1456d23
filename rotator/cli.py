"""CLI for driving secret rotation by hand."""
import json
import sys
from typing import Optional

import click

from rotator.core.config import settings
from rotator.dependencies import get_rotation_service
from rotator.domain.rotation.dispatcher import dispatch
from rotator.domain.rotation.models import RotationStep, StagingLabel, StagingSlots
from rotator.errors import RotationError, SecretNotFound
from rotator.logging_hardening import configure_logging
from rotator.utils.id import uuid7


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL")
def cli(log_level: Optional[str]):
    """Secret rotation CLI."""
    configure_logging(log_level or settings.LOG_LEVEL)


def _fail(step: str, error: RotationError):
    click.echo(f"✗ {step} failed: {error.code}: {error.message}", err=True)
    if error.retryable:
        click.echo("  (retryable)", err=True)
    sys.exit(1)


@cli.command("invoke")
@click.option("--step", required=True, help="Rotation step (createSecret, setSecret, testSecret, finishSecret)")
@click.option("--secret-id", required=True, help="Secret identifier")
@click.option("--token", required=True, help="Client request token (version ID of the candidate)")
def invoke(step: str, secret_id: str, token: str):
    """Invoke a single rotation step."""
    service = get_rotation_service()
    try:
        dispatch(service, step, secret_id, token)
    except RotationError as e:
        _fail(step, e)
    click.echo(f"✓ {step} completed for {secret_id}")


@cli.command("rotate")
@click.option("--secret-id", required=True, help="Secret identifier")
@click.option("--token", default=None, help="Client request token (default: new UUIDv7)")
def rotate(secret_id: str, token: Optional[str]):
    """Run createSecret, setSecret, testSecret and finishSecret in order."""
    token = token or uuid7()
    service = get_rotation_service()
    click.echo(f"Rotating {secret_id} with token {token}")
    for step in RotationStep:
        try:
            dispatch(service, step.value, secret_id, token)
        except RotationError as e:
            _fail(step.value, e)
        click.echo(f"  ✓ {step.value}")
    click.echo(f"✓ Rotation of {secret_id} complete")


@cli.command("status")
@click.option("--secret-id", required=True, help="Secret identifier")
@click.option("--format", "fmt", type=click.Choice(["table", "json"]), default="table")
def status(secret_id: str, fmt: str):
    """Show which version holds each staging label."""
    service = get_rotation_service()
    holders = {}
    for label in StagingLabel:
        try:
            holders[label] = service.vault.get_secret_version(secret_id, label).version_id
        except SecretNotFound:
            continue
    slots = StagingSlots(holders)

    if fmt == "json":
        click.echo(json.dumps({"secret_id": secret_id, "labels": slots.as_dict()}, indent=2))
    else:
        click.echo(f"\n{'Label':<15} {'Version':<40}")
        click.echo("-" * 55)
        for label, version_id in slots.as_dict().items():
            click.echo(f"{label:<15} {version_id or '-':<40}")


if __name__ == "__main__":
    cli()
