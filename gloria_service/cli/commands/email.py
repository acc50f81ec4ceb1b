"""Email delivery commands."""

import sys

import click

from gloria_service.cli.utils import coro, error, header, info, section, success, warning


@click.group(name="email")
def email() -> None:
    """Email delivery commands."""


@email.command(name="test")
@click.option("--to", "-r", "recipient", required=True, help="Recipient email address")
@click.option("--provider", "-p", default=None, help="Send through this provider instead of EMAIL_PROVIDER")
@coro
async def test_email(recipient: str, provider: str | None) -> None:
    """Send a test email through the configured transports.

    A failed send is queued for retry like any other email; the command
    reports it as a failure.

    \b
    Examples:
      gloria-notifications email test --to admin@ypkgloria.org
      gloria-notifications email test --to admin@ypkgloria.org --provider smtp
    """
    from gloria_service.features.notifications.channels import get_email_sender

    sender = get_email_sender()
    header("Sending Test Email")
    info(f"Recipient: {recipient}")

    if provider and not sender.switch_provider(provider):
        error(f"Provider '{provider}' is unknown or not configured")
        sys.exit(1)

    if not sender.transport_ready:
        error("Email service not configured")
        sys.exit(1)

    delivered = await sender.send_test_email(recipient)
    await sender.close()

    if delivered:
        success("Test email sent")
    else:
        error("Test email failed (queued for retry if the recipient was valid)")
        sys.exit(1)


@email.command(name="providers")
def list_providers() -> None:
    """List registered providers and the active configuration."""
    from gloria_service.features.notifications.channels import get_email_sender

    status = get_email_sender().get_provider_status()

    section("Email Providers")
    for name in status["available_providers"]:
        marker = " (primary)" if name == status["provider"] else ""
        click.echo(f"  {name}{marker}")

    section("Status")
    click.echo(f"  Primary: {status['provider'] or 'none'}")
    click.echo(f"  SMTP fallback: {'yes' if status['smtp_fallback'] else 'no'}")
    click.echo(f"  Circuit: {status['circuit_state']}")
    if status["configured"]:
        success("Email delivery configured")
    else:
        warning("Email delivery not configured")
