"""Click CLI: single sends, discussions, rooms and the HTTP server."""

import asyncio
import logging
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from playwright.async_api import Error as PlaywrightError
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from config.config_loader import AppConfig, load_config
from council.browser.base import CouncilError
from council.browser.driver import create_driver
from council.discussion import roles_from_config, run_discussion
from council.healthcheck import run_health_checks
from council.models import DiscussionTurn
from council.output import print_discussion, print_parallel, save_parallel_to_file, save_to_file
from council.parallel import run_parallel_discussion
from council.persistence import record_agent_urls, record_message
from council.store import RoomStore

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _fail(message: str) -> None:
    console.print(f"[bold red]Error:[/bold red] {message}")
    sys.exit(1)


def _open_store(config: AppConfig, room_id: str | None) -> RoomStore | None:
    """Open the room store only when a room was requested; exit if the room is unknown."""
    if room_id is None:
        return None
    store = RoomStore(config.storage.db_path)
    if store.get_room(room_id) is None:
        store.close()
        _fail(f"Room not found: {room_id}")
    return store


@click.group()
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.option("--settings", "settings_path", type=click.Path(exists=True, dir_okay=False), default=None,
              help="Path to settings.yaml (default: bundled config)")
@click.pass_context
def main(ctx: click.Context, verbose: bool, settings_path: str | None) -> None:
    """Gemini Council -- multi-account Gemini web sessions as a messaging backend.

    \b
    Examples:
      council chat 0 "Hello"
      council discuss "Should we use REST or GraphQL?" --rounds 1
      council discuss-v2 "How do I migrate a monolith to services?"
      council serve --port 3000
    """
    load_dotenv()
    _setup_logging(verbose)

    try:
        ctx.obj = load_config(Path(settings_path)) if settings_path else load_config()
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)


async def _chat(config: AppConfig, account: str, message: str, room_id: str | None) -> str:
    store = _open_store(config, room_id)
    driver = create_driver(config)
    try:
        record_message(store, room_id, "user", message, account)
        response = await driver.send_message(account, message)
        record_message(store, room_id, account, response)
        await record_agent_urls(store, room_id, driver, [account])
        return response
    finally:
        await driver.registry.close()
        if store is not None:
            store.close()


@main.command()
@click.argument("account")
@click.argument("message")
@click.option("--room", "room_id", default=None, help="Save both sides of the exchange in this room")
@click.pass_obj
def chat(config: AppConfig, account: str, message: str, room_id: str | None) -> None:
    """Send MESSAGE as ACCOUNT and print the response."""
    try:
        response = asyncio.run(_chat(config, account, message, room_id))
    except (CouncilError, PlaywrightError) as exc:
        _fail(str(exc))
    console.print(Markdown(response))


async def _new_chat(config: AppConfig, account: str) -> None:
    driver = create_driver(config)
    try:
        await driver.start_new_chat(account)
    finally:
        await driver.registry.close()


@main.command("new-chat")
@click.argument("account")
@click.pass_obj
def new_chat(config: AppConfig, account: str) -> None:
    """Start a fresh conversation for ACCOUNT."""
    try:
        asyncio.run(_new_chat(config, account))
    except (CouncilError, PlaywrightError) as exc:
        _fail(str(exc))
    console.print(f"[green]OK[/green] New chat started for account {account}")


async def _accounts(config: AppConfig, check: bool) -> tuple[list[str], dict[str, tuple[bool, str]]]:
    driver = create_driver(config)
    registry = driver.registry
    try:
        if not check:
            return registry.list_active_agents(), {}
        await registry.connect()
        results = await run_health_checks(registry, registry.available_accounts())
        return registry.list_active_agents(), results
    finally:
        await registry.close()


@main.command()
@click.option("--check", is_flag=True, default=False, help="Connect and make sure every account's tab is ready")
@click.pass_obj
def accounts(config: AppConfig, check: bool) -> None:
    """List configured accounts, optionally checking each one."""
    try:
        active, results = asyncio.run(_accounts(config, check))
    except (CouncilError, PlaywrightError) as exc:
        _fail(str(exc))

    console.print(f"Available: {', '.join(config.browser.accounts)}")
    if not check:
        return
    console.print(f"Active: {', '.join(active) or '-'}")
    failed = 0
    for agent_id in sorted(results):
        ok, err = results[agent_id]
        if ok:
            console.print(f"  [green]OK  [/green] account {agent_id}")
        else:
            failed += 1
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            console.print(f"  [red]FAIL[/red] account {agent_id}: {short_err}")
    if failed:
        sys.exit(1)


async def _discuss(config: AppConfig, question: str, rounds: int, fresh: bool, room_id: str | None):
    store = _open_store(config, room_id)
    driver = create_driver(config)
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        ) as progress:

            def on_turn(turn: DiscussionTurn) -> None:
                mark = "[red]FAIL[/red]" if turn.failed else "[green]OK[/green]"
                progress.print(f"{mark} Round {turn.round}: {turn.name} ({len(turn.response)} chars)")

            progress.add_task("Running discussion...", total=None)
            return await run_discussion(
                question=question,
                channel=driver,
                roles=roles_from_config(config.discussion),
                prompts=config.prompts,
                num_rounds=rounds,
                fresh_start=fresh,
                store=store,
                room_id=room_id,
                on_turn=on_turn,
            )
    finally:
        await driver.registry.close()
        if store is not None:
            store.close()


@main.command()
@click.argument("question", required=False)
@click.option("--file", "question_file", type=click.Path(exists=True), help="Read question from a file")
@click.option("--rounds", default=None, type=int, help="Number of discussion rounds (default: from config)")
@click.option("--no-fresh", "no_fresh", is_flag=True, default=False,
              help="Continue the current conversations instead of starting new chats")
@click.option("--room", "room_id", default=None, help="Record the discussion in this room")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.pass_obj
def discuss(
    config: AppConfig,
    question: str | None,
    question_file: str | None,
    rounds: int | None,
    no_fresh: bool,
    room_id: str | None,
    output_path: str | None,
) -> None:
    """Serial discussion: the 3-role panel speaks in turn."""
    question_text = _question_text(question, question_file)
    effective_rounds = rounds if rounds is not None else config.discussion.rounds
    if not 1 <= effective_rounds <= config.discussion.max_rounds:
        _fail(f"--rounds must be between 1 and {config.discussion.max_rounds}")

    console.print(f"\n[bold cyan]Council[/bold cyan] -- serial, {effective_rounds} round(s)")
    console.print(f"Question: [italic]{question_text[:80]}{'...' if len(question_text) > 80 else ''}[/italic]\n")

    try:
        result = asyncio.run(_discuss(config, question_text, effective_rounds, not no_fresh, room_id))
    except (CouncilError, PlaywrightError) as exc:
        _fail(str(exc))

    print_discussion(result)
    output_dir = Path(output_path) if output_path else config.storage.output_dir
    saved = save_to_file(result, output_dir)
    console.print(f"\n[dim]Saved to: {saved}[/dim]")


async def _discuss_v2(config: AppConfig, question: str, fresh: bool, room_id: str | None):
    store = _open_store(config, room_id)
    driver = create_driver(config)
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task("Phase 1/4: split...", total=None)
            labels = {
                "split": "Phase 2/4: parallel execution...",
                "execute": "Phase 3/4: cross-review...",
                "review": "Phase 4/4: summarize...",
                "summarize": "Done",
            }

            def on_phase_complete(phase: str) -> None:
                progress.print(f"[green]OK[/green] Phase {phase} complete")
                progress.update(task, description=labels[phase])

            return await run_parallel_discussion(
                question=question,
                channel=driver,
                config=config.discussion.parallel,
                prompts=config.prompts,
                fresh_start=fresh,
                store=store,
                room_id=room_id,
                on_phase_complete=on_phase_complete,
            )
    finally:
        await driver.registry.close()
        if store is not None:
            store.close()


@main.command("discuss-v2")
@click.argument("question", required=False)
@click.option("--file", "question_file", type=click.Path(exists=True), help="Read question from a file")
@click.option("--fresh", is_flag=True, default=False, help="Start new chats for all participants first")
@click.option("--room", "room_id", default=None, help="Record the discussion in this room")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.pass_obj
def discuss_v2(
    config: AppConfig,
    question: str | None,
    question_file: str | None,
    fresh: bool,
    room_id: str | None,
    output_path: str | None,
) -> None:
    """Parallel discussion: split, execute, cross-review, summarize."""
    question_text = _question_text(question, question_file)
    console.print("\n[bold cyan]Council[/bold cyan] -- parallel, 4 phases")
    console.print(f"Question: [italic]{question_text[:80]}{'...' if len(question_text) > 80 else ''}[/italic]\n")

    try:
        result = asyncio.run(_discuss_v2(config, question_text, fresh, room_id))
    except (CouncilError, PlaywrightError) as exc:
        _fail(str(exc))

    print_parallel(result)
    output_dir = Path(output_path) if output_path else config.storage.output_dir
    saved = save_parallel_to_file(result, output_dir)
    console.print(f"\n[dim]Saved to: {saved}[/dim]")


def _question_text(question: str | None, question_file: str | None) -> str:
    if question_file:
        return Path(question_file).read_text(encoding="utf-8").strip()
    if question:
        return question
    _fail("Provide a QUESTION argument or --file.")
    return ""


@main.command()
@click.option("--create", "create_name", default=None, help="Create a room with this name")
@click.pass_obj
def rooms(config: AppConfig, create_name: str | None) -> None:
    """List stored rooms, or create one."""
    store = RoomStore(config.storage.db_path)
    try:
        if create_name is not None:
            room = store.create_room(create_name)
            console.print(f"[green]Created[/green] {room['id']} ({room['name']})")
            return
        all_rooms = store.get_rooms()
        if not all_rooms:
            click.echo("No rooms.")
            return
        for room in all_rooms:
            console.print(f"{room['id']}  {room['name']}  [dim]{room['message_count']} messages[/dim]")
    finally:
        store.close()


@main.command()
@click.option("--host", default=None, help="Bind address (default: from config)")
@click.option("--port", default=None, type=int, help="Port (default: from config)")
@click.pass_obj
def serve(config: AppConfig, host: str | None, port: int | None) -> None:
    """Run the HTTP API server."""
    import uvicorn

    from council.server import create_app

    uvicorn.run(
        create_app(config),
        host=host or config.server.host,
        port=port or config.server.port,
    )


if __name__ == "__main__":
    main()
