"""Operator CLI for the chat store.

Provides table creation, schema probing and read-only inspection of chats and
messages stored in the warehouse.
"""

import asyncio
import sys
from typing import Optional

import structlog
import typer

from chatstore.errors import WarehouseError
from chatstore.services.codec import format_timestamp
from chatstore.services.dedupe import dedupe_assistant_messages
from chatstore.services.factory import ChatStack, create_stack_from_env

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    logger_factory=lambda name: structlog.PrintLogger(file=sys.stderr),
    wrapper_class=structlog.BoundLogger,
    context_class=dict,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)

app = typer.Typer(
    name="chatstore",
    help="""Manage and inspect chat data stored in BigQuery.

Settings come from `BQ_*` environment variables (or a `.env` file).

Examples:

  # Create the tables if they are missing
  uv run chatstore ensure-tables

  # Show how the messages table is shaped
  uv run chatstore probe

  # List a user's chats, then one chat's messages
  uv run chatstore chats USER_ID --limit 5
  uv run chatstore messages CHAT_ID""",
    rich_markup_mode="markdown",
)

AccessTokenOption = typer.Option(
    None,
    "--access-token",
    "-t",
    help="Bearer token (default: BQ_ACCESS_TOKEN)",
)


def _open_stack(access_token: Optional[str], auto_create_tables: bool = False) -> ChatStack:
    try:
        return create_stack_from_env(access_token=access_token, auto_create_tables=auto_create_tables)
    except ValueError as exc:
        logger.error("missing_credentials", error=str(exc))
        raise typer.Exit(1) from exc


def _run(coro_factory, access_token: Optional[str], auto_create_tables: bool = False):
    async def runner():
        async with _open_stack(access_token, auto_create_tables) as stack:
            return await coro_factory(stack)

    try:
        return asyncio.run(runner())
    except WarehouseError as exc:
        logger.error("warehouse_command_failed", error=str(exc))
        raise typer.Exit(1) from exc


@app.command("ensure-tables")
def ensure_tables(access_token: Optional[str] = AccessTokenOption) -> None:
    """Create the messages, files and feedback tables if they do not exist."""

    async def create(stack: ChatStack) -> bool:
        await stack.tables.ensure_tables()
        return stack.tables.tables_ensured

    if not _run(create, access_token, auto_create_tables=True):
        typer.echo("Table creation failed; see the log for details.")
        raise typer.Exit(1)
    typer.echo("Tables are in place.")


@app.command()
def probe(access_token: Optional[str] = AccessTokenOption) -> None:
    """Read the live column types of the messages table."""

    async def run_probe(stack: ChatStack):
        found = await stack.negotiator.probe()
        return found, stack.negotiator.state

    found, state = _run(run_probe, access_token)
    if not found:
        typer.echo("Messages table not found or not readable.")
        raise typer.Exit(1)
    typer.echo(f"Temporal cast mode: {state.preferred_mode.value}")
    disabled = ", ".join(sorted(state.disabled_columns)) or "none"
    typer.echo(f"Missing columns: {disabled}")


@app.command()
def chats(
    user_id: str = typer.Argument(
        ...,
        help="Owner of the chats",
    ),
    limit: int = typer.Option(
        20,
        "--limit",
        "-n",
        help="Maximum number of chats to list",
    ),
    starting_after: Optional[str] = typer.Option(
        None,
        "--starting-after",
        help="Cursor chat id",
    ),
    ending_before: Optional[str] = typer.Option(
        None,
        "--ending-before",
        help="Cursor chat id",
    ),
    access_token: Optional[str] = AccessTokenOption,
) -> None:
    """List a user's chats, newest first."""

    async def list_chats(stack: ChatStack):
        return await stack.repository.get_chats_by_user_id(
            user_id,
            limit=limit,
            starting_after=starting_after,
            ending_before=ending_before,
        )

    page = _run(list_chats, access_token)
    for chat in page.chats:
        typer.echo(f"{chat.id}\t{format_timestamp(chat.created_at)}\t{chat.visibility.value}\t{chat.title}")
    if page.has_more:
        typer.echo("(more chats available)")


@app.command()
def messages(
    chat_id: str = typer.Argument(
        ...,
        help="Chat to print",
    ),
    raw: bool = typer.Option(
        False,
        "--raw",
        help="Keep repeated assistant answers",
    ),
    access_token: Optional[str] = AccessTokenOption,
) -> None:
    """Print the messages of a chat in order."""

    async def load(stack: ChatStack):
        return await stack.repository.get_messages_by_chat_id(chat_id)

    loaded = _run(load, access_token)
    if not raw:
        loaded = dedupe_assistant_messages(loaded)
    for message in loaded:
        typer.echo(f"[{format_timestamp(message.created_at)}] {message.role.value}: {message.text}")


@app.command()
def version() -> None:
    """Show version information."""
    from chatstore import __version__

    typer.echo(f"chatstore {__version__}")
