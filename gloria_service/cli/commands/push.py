"""Web push commands."""

import click

from gloria_service.cli.utils import header, info, success


@click.group(name="push")
def push() -> None:
    """Web push commands."""


@push.command(name="generate-vapid-keys")
@click.option("--env", "env_format", is_flag=True, help="Print as PUSH_ environment variables")
def generate_vapid_keys(env_format: bool) -> None:
    """Generate a VAPID key pair for web push.

    The public key goes to browsers (PushManager.subscribe); keep the
    private key secret.
    """
    from gloria_service.infra.push import generate_vapid_keys as generate

    keys = generate()
    if env_format:
        click.echo(f"PUSH_VAPID_PUBLIC_KEY={keys.public_key}")
        click.echo(f"PUSH_VAPID_PRIVATE_KEY={keys.private_key}")
        return

    header("VAPID Keys")
    click.echo(f"  Public key:  {keys.public_key}")
    click.echo(f"  Private key: {keys.private_key}")
    info("Set PUSH_VAPID_PUBLIC_KEY and PUSH_VAPID_PRIVATE_KEY to enable push delivery")
    success("Keys generated")
