"""Main CLI entry point for gloria-notifications management commands."""

import click

from gloria_service.cli.commands import email, preferences, push, server
from gloria_service.infra.logging.config import setup_logging


@click.group()
@click.version_option(package_name="gloria-notifications", prog_name="gloria-notifications")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Gloria notification service management commands.

    \b
    Command Groups:
      server       Development and production servers
      preferences  Preference checks and tracking cleanup
      email        Email transport checks
      push         Web push key management

    \b
    Quick Start:
      gloria-notifications push generate-vapid-keys --env
      gloria-notifications email test --to admin@ypkgloria.org
      gloria-notifications server dev
    """
    ctx.ensure_object(dict)


cli.add_command(server.server)
cli.add_command(preferences.preferences)
cli.add_command(email.email)
cli.add_command(push.push)


def main() -> None:
    """Entry point for CLI."""
    setup_logging()
    cli(obj={})


if __name__ == "__main__":
    main()
