"""
Click CLI for the Streamlabs client.

Commands:
    authorize       Run the OAuth flow and cache tokens
    status          Show authorization status
    revoke          Delete cached tokens
    listen          Connect and print donations as they arrive
    send-donation   Connect and send a test donation
"""

import logging
import sys
from typing import Optional

import click

from src.oauth.config import StreamlabsSettings
from src.oauth.exceptions import ConfigurationError

from .models import ConnectionState, Donation
from .session import StreamlabsSession

logger = logging.getLogger(__name__)


def print_error(message: str) -> None:
    """Print error message to stderr."""
    click.secho(f"Error: {message}", fg="red", err=True)


def print_success(message: str) -> None:
    """Print success message."""
    click.secho(message, fg="green")


def print_donation(donation: Donation) -> None:
    """Print a donation event in a formatted way."""
    for entry in donation.message:
        click.echo()
        click.secho(f"=== Donation from {entry.from_ or entry.name or 'anonymous'} ===", bold=True)
        click.echo(f"Amount:  {entry.display_amount}")
        if entry.message:
            click.echo(f"Message: {entry.message}")


def get_session(ctx: click.Context) -> StreamlabsSession:
    """Get the StreamlabsSession from context."""
    return ctx.obj["session"]


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.option(
    "--token-file",
    help="Token file path (overrides STREAMLABS_TOKEN_FILE)",
)
@click.option("--debug", is_flag=True, help="Log websocket traffic")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, token_file: Optional[str], debug: bool) -> None:
    """
    Streamlabs client - authorize, listen for donations and send test donations.

    Credentials are read from STREAMLABS_CLIENT_ID and STREAMLABS_CLIENT_SECRET.
    """
    ctx.ensure_object(dict)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    try:
        settings = StreamlabsSettings.from_env()
    except ConfigurationError as e:
        print_error(str(e))
        sys.exit(2)

    if token_file:
        settings.token_file = token_file
    if debug:
        settings.emit_debug_messages = True

    if "session" not in ctx.obj:
        ctx.obj["session"] = StreamlabsSession(settings)


@cli.command()
@click.option("--timeout", type=float, default=None, help="Seconds to wait for authorization")
@click.pass_context
def authorize(ctx: click.Context, timeout: Optional[float]) -> None:
    """Authorize with Streamlabs and cache tokens."""
    session = get_session(ctx)
    if session.authorize(timeout=timeout):
        print_success("Authorization successful.")
    else:
        print_error("Authorization failed. Check application settings and credentials.")
        sys.exit(1)


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show authorization status."""
    info = get_session(ctx).auth.get_status()
    click.echo(f"Credentials:   {'configured' if info['credentials_configured'] else 'missing'}")
    click.echo(f"Access token:  {'cached' if info['access_token_cached'] else 'none'}")
    click.echo(f"Refresh token: {'cached' if info['refresh_token_cached'] else 'none'}")
    click.echo(f"Provider:      {info['auth_provider']}")
    if not info["access_token_cached"]:
        sys.exit(1)


@cli.command()
@click.pass_context
def revoke(ctx: click.Context) -> None:
    """Delete cached tokens, forcing a new authorization."""
    get_session(ctx).auth.clear_cached_tokens()
    print_success("Cached tokens deleted.")


@cli.command()
@click.option("--timeout", type=float, default=None, help="Seconds to wait for the connection")
@click.pass_context
def listen(ctx: click.Context, timeout: Optional[float]) -> None:
    """Connect and print donations until interrupted."""
    session = get_session(ctx)
    client = session.client

    def handle_state(state: ConnectionState) -> None:
        click.echo(f"Connection: {state.value}")
        if state is ConnectionState.NOT_CONNECTED:
            session.dispatcher.stop()

    client.on_connection_state_changed.subscribe(handle_state)
    client.on_donation.subscribe(print_donation)

    if not session.connect_and_wait(timeout=timeout):
        print_error("Could not connect to the Streamlabs server.")
        session.close()
        sys.exit(1)

    try:
        session.dispatcher.run_forever()
    except KeyboardInterrupt:
        click.echo()
    finally:
        client.on_connection_state_changed.unsubscribe(handle_state)
        session.close()


@cli.command("send-donation")
@click.option("--name", default="TestName", show_default=True, help="Donor name")
@click.option("--message", default="Test message.", show_default=True, help="Donor message")
@click.option(
    "--identifier", default="test_identifier_value", show_default=True, help="Donor identifier"
)
@click.option("--amount", type=float, default=25.98, show_default=True, help="Donation amount")
@click.option("--currency", default="USD", show_default=True, help="3 letter currency code")
@click.option("--timeout", type=float, default=60.0, show_default=True, help="Seconds to wait")
@click.pass_context
def send_donation(
    ctx: click.Context,
    name: str,
    message: str,
    identifier: str,
    amount: float,
    currency: str,
    timeout: float,
) -> None:
    """Connect and send a test donation."""
    session = get_session(ctx)

    try:
        if not session.connect_and_wait(timeout=timeout):
            print_error("Could not connect to the Streamlabs server.")
            sys.exit(1)

        request = session.client.send_donation(name, message, identifier, amount, currency)
        if request is None:
            print_error("Donation was rejected.")
            sys.exit(1)

        session.dispatcher.run_until(lambda: request.done, timeout=timeout)
        if not request.succeeded:
            print_error(f"Failed to send donation: {request.error or 'timed out'}")
            sys.exit(1)

        print_success(f"Donation of {amount:g} {currency} sent.")
    finally:
        session.close()


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
