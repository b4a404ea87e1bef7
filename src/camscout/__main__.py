"""CLI entry point for camscout."""

import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

import click

from .config import Config
from .credentials import KeyringCredentialProvider, StaticCredentialProvider
from .exceptions import CredentialsError
from .inventory.memory import InMemoryInventory
from .models.common import Credentials, DiscoveryMode
from .service import DeviceMonitorService


def _build_service(ctx: click.Context) -> DeviceMonitorService:
    config: Config = ctx.obj["config"]
    inventory = None
    credential_provider = None
    try:
        if ctx.obj.get("devices_file"):
            inventory = InMemoryInventory.from_file(Path(ctx.obj["devices_file"]))
        if ctx.obj.get("credentials_file"):
            credential_provider = StaticCredentialProvider.from_file(Path(ctx.obj["credentials_file"]))
    except (OSError, ValueError) as e:
        click.echo(f"Error loading seed files: {e}", err=True)
        sys.exit(1)
    return DeviceMonitorService(config, inventory=inventory, credential_provider=credential_provider)


async def _dump_devices(service: DeviceMonitorService, output_file: Optional[str]) -> None:
    devices = [device.model_dump(mode="json") for device in await service.inventory.list_devices()]
    payload = json.dumps(devices, indent=2)
    if output_file:
        with open(output_file, "w") as f:
            f.write(payload)
        click.echo(f"Inventory written to {output_file}")
    else:
        click.echo(payload)


@click.group()
@click.option(
    "--config-file", "-c",
    type=click.Path(exists=True, dir_okay=False, resolve_path=True),
    help="Path to a JSON configuration file.",
    envvar="CAMSCOUT_CONFIG_FILE"
)
@click.option(
    "--log-level", "-l",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Override the logging level (e.g., DEBUG, INFO).",
    envvar="CAMSCOUT_LOGGING_LEVEL"
)
@click.option(
    "--log-format",
    type=click.Choice(["console", "json"], case_sensitive=False),
    default=None,
    help="Override logging format.",
    envvar="CAMSCOUT_LOGGING_FORMAT"
)
@click.option(
    "--devices-file",
    type=click.Path(exists=True, dir_okay=False, resolve_path=True),
    help="JSON list of known devices used to seed the in-memory inventory.",
)
@click.option(
    "--credentials-file",
    type=click.Path(exists=True, dir_okay=False, resolve_path=True),
    help="JSON mapping of secret path to {username, password}. Defaults to the system keyring.",
)
@click.pass_context
def cli(ctx: click.Context, config_file: Optional[str], log_level: Optional[str], log_format: Optional[str],
        devices_file: Optional[str], credentials_file: Optional[str]) -> None:
    """camscout - Tracks camera reachability and discovers cameras via WS-Discovery."""
    try:
        if config_file:
            # Load from specified file only
            cfg = Config.from_file(Path(config_file))
        else:
            # Load from environment variables (and .env file if present)
            cfg = Config()
    except Exception as e:
        click.echo(f"Error loading configuration: {e}", err=True)
        sys.exit(1)

    if log_level:
        cfg.logging.level = log_level.upper()
    if log_format:
        cfg.logging.format = log_format.lower()

    ctx.ensure_object(dict)
    ctx.obj["config"] = cfg
    ctx.obj["devices_file"] = devices_file
    ctx.obj["credentials_file"] = credentials_file


@cli.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Runs the health-check and discovery loops until interrupted."""
    service = _build_service(ctx)
    try:
        asyncio.run(service.run_until_cancelled())
    except KeyboardInterrupt:
        click.echo("\nInterrupted by user.", err=True)
        sys.exit(130)


@cli.command()
@click.option(
    "--subnets", "-n",
    multiple=True,
    help="CIDR subnets to scan (e.g., '192.168.1.0/24'). Can be used multiple times. Overrides configuration."
)
@click.option(
    "--mode",
    type=click.Choice([mode.value for mode in DiscoveryMode], case_sensitive=False),
    default=None,
    help="Discovery mechanism(s) to use. Overrides configuration."
)
@click.option(
    "--output-file", "-o",
    type=click.Path(dir_okay=False, writable=True, resolve_path=True),
    help="Write the resulting inventory (JSON) to this file instead of stdout."
)
@click.pass_context
def discover(ctx: click.Context, subnets: List[str], mode: Optional[str], output_file: Optional[str]) -> None:
    """Runs a single discovery pass and prints the resulting inventory."""
    config: Config = ctx.obj["config"]
    if subnets:
        config.discovery.subnets = list(subnets)
    if mode:
        config.discovery.discovery_mode = DiscoveryMode(mode.lower())
    service = _build_service(ctx)

    async def run_pass():
        try:
            report = await service.discover_once()
            click.echo(f"Created: {len(report.created)}  Updated: {len(report.updated)}  Failed: {len(report.failed)}", err=True)
            await _dump_devices(service, output_file)
        finally:
            await service.stop()

    try:
        asyncio.run(run_pass())
    except KeyboardInterrupt:
        click.echo("\nDiscovery interrupted by user.", err=True)
        sys.exit(130)


@cli.command("check-status")
@click.pass_context
def check_status(ctx: click.Context) -> None:
    """Probes every known device once and prints its reachability tier."""
    service = _build_service(ctx)

    async def run_pass():
        try:
            return await service.check_statuses_once()
        finally:
            await service.stop()

    try:
        statuses = asyncio.run(run_pass())
    except KeyboardInterrupt:
        click.echo("\nStatus check interrupted by user.", err=True)
        sys.exit(130)

    if not statuses:
        click.echo("No devices to check.")
        return
    width = max(len(name) for name in statuses)
    for name, tier in sorted(statuses.items()):
        click.echo(f"{name:<{width}}  {tier.value}")


@cli.command("set-credentials")
@click.argument("secret_path", required=False)
@click.option("--username", "-u", prompt=True, help="Device account user name.")
@click.option("--password", "-p", prompt=True, hide_input=True, confirmation_prompt=True, help="Device account password.")
@click.pass_context
def set_credentials(ctx: click.Context, secret_path: Optional[str], username: str, password: str) -> None:
    """Stores device credentials in the system keyring (defaults to the configured default secret path)."""
    config: Config = ctx.obj["config"]
    secret_path = secret_path or config.credentials.default_secret_path
    provider = KeyringCredentialProvider(config.credentials)
    try:
        asyncio.run(provider.store_credentials(secret_path, Credentials(username=username, password=password)))
    except CredentialsError as e:
        click.echo(f"Error storing credentials: {e}", err=True)
        sys.exit(1)
    click.echo(f"Credentials stored at '{secret_path}' (keyring service '{provider.service_name}').")


@cli.command()
@click.pass_context
def version(ctx: click.Context) -> None:
    """Show version information."""
    from . import __version__
    click.echo(f"camscout v{__version__}")


@cli.command("config-show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show current configuration."""
    config = ctx.obj["config"]
    click.echo(json.dumps(config.model_dump(mode="json"), indent=2))


if __name__ == "__main__":
    cli()
