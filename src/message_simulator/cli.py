"""msgsim CLI - drive the message simulator from a terminal."""

import contextlib
import json
import logging
import os
import sys
from collections.abc import Iterator
from pathlib import Path

import click
import yaml

from . import conventions
from .config import config_path, load_config, save_config
from .models import display_name
from .scheduler import AsyncioScheduler, ManualScheduler
from .simulator import Simulator, build_simulator
from .startup import setup_logging

logger = logging.getLogger(__name__)


class _EpilogGroup(click.Group):
    """Click group that preserves epilog formatting."""

    def format_epilog(self, ctx: click.Context, formatter: click.HelpFormatter) -> None:
        if self.epilog:
            formatter.write("\n")
            for line in self.epilog.splitlines():
                formatter.write(f"{line}\n")


EPILOG = """\
Quick-start examples:

  msgsim threads            List conversations (current marked with *)
  msgsim show               Print the current conversation
  msgsim say "hi" -s other  Append a message
  msgsim open <id>          Switch to another conversation
  msgsim export -o t.json   Save the current conversation
  msgsim import t.json      Load a conversation as a new thread
  msgsim serve              Run the HTTP API for the browser UI"""


@click.group(
    cls=_EpilogGroup,
    epilog=EPILOG,
    help="Message simulator: persistent multi-thread chat store.",
)
@click.option(
    "--home",
    type=click.Path(file_okay=False, path_type=Path),
    envvar=conventions.HOME_ENV_VAR,
    help="Simulator home directory (default ~/.message-simulator).",
)
@click.option("-v", "--verbose", is_flag=True, help="Log to the console.")
@click.version_option(package_name="message-simulator")
def main(home: Path | None, verbose: bool) -> None:
    """Message simulator: persistent multi-thread chat store."""
    if home is not None:
        os.environ[conventions.HOME_ENV_VAR] = str(home)
    if verbose:
        setup_logging(logging.DEBUG, to_file=False)


@contextlib.contextmanager
def _simulator() -> Iterator[Simulator]:
    """Started file-backed simulator; pending writes are flushed on exit."""
    sim = build_simulator(load_config(), scheduler=ManualScheduler())
    sim.repository.on_storage_error(
        lambda event: click.echo(
            f"Warning: could not save ({event.error}). "
            "Changes may not survive this session.",
            err=True,
        )
    )
    sim.start()
    try:
        yield sim
    finally:
        sim.close()


# ── Threads ──────────────────────────────────────────────────────


@main.command(help="List conversations, most recently updated first.")
@click.option("--json", "as_json", is_flag=True, help="Machine-readable output.")
def threads(as_json: bool) -> None:
    with _simulator() as sim:
        current = sim.repository.current_thread_id
        listed = sim.repository.list_threads()
        if as_json:
            click.echo(
                json.dumps(
                    {
                        "current_thread_id": current,
                        "threads": [
                            {
                                "id": t.id,
                                "displayName": display_name(t),
                                "updatedAt": t.updated_at,
                                "messageCount": len(t.messages),
                            }
                            for t in listed
                        ],
                    },
                    indent=2,
                )
            )
            return
        for thread in listed:
            marker = "*" if thread.id == current else " "
            click.echo(
                f"{marker} {thread.id}  {display_name(thread)}  "
                f"({len(thread.messages)} messages, updated {thread.updated_at})"
            )


@main.command(help="Print the current conversation.")
def show() -> None:
    with _simulator() as sim:
        thread = sim.repository.get_current_thread()
        if thread is None:
            return
        recipient = thread.recipient
        click.echo(f"{display_name(thread)} - {recipient.name}, {recipient.location}")
        for message in thread.messages:
            images = f" [{len(message.images)} image(s)]" if message.images else ""
            click.echo(f"  [{message.sender:>5}] {message.message}{images}")


@main.command(help="Create a conversation seeded with the demo messages.")
@click.option("--open", "open_it", is_flag=True, help="Switch to it.")
def new(open_it: bool) -> None:
    with _simulator() as sim:
        thread = sim.repository.create_thread()
        if open_it:
            sim.reconciler.open_thread(thread.id)
        click.echo(thread.id)


@main.command(name="open", help="Switch to a conversation by id.")
@click.argument("thread_id")
def open_thread(thread_id: str) -> None:
    with _simulator() as sim:
        resolution = sim.reconciler.open_thread(thread_id)
        if resolution.thread_id != thread_id:
            click.echo(
                f"Thread {thread_id} not found; opened {resolution.thread_id} "
                f"({resolution.source}).",
                err=True,
            )
        click.echo(resolution.thread_id)


@main.command(help="Copy a conversation under a new id.")
@click.argument("thread_id")
def duplicate(thread_id: str) -> None:
    with _simulator() as sim:
        thread = sim.repository.duplicate_thread(thread_id)
        if thread is None:
            raise click.ClickException(f"Thread {thread_id} not found")
        click.echo(thread.id)


@main.command(help="Rename a conversation (omit NAME to use the recipient's).")
@click.argument("thread_id")
@click.argument("name", required=False)
def rename(thread_id: str, name: str | None) -> None:
    with _simulator() as sim:
        if not sim.repository.rename_thread(thread_id, name):
            raise click.ClickException(f"Thread {thread_id} not found")


@main.command(help="Delete a conversation.")
@click.argument("thread_id")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
def delete(thread_id: str, yes: bool) -> None:
    with _simulator() as sim:
        thread = sim.repository.get_thread(thread_id)
        if thread is None:
            raise click.ClickException(f"Thread {thread_id} not found")
        if not yes and not click.confirm(f"Delete '{display_name(thread)}'?"):
            click.echo("Aborted.")
            return
        sim.repository.delete_thread(thread_id)
        click.echo(f"Deleted. Current thread: {sim.repository.current_thread_id}")


# ── Current conversation ─────────────────────────────────────────


@main.command(help="Append a message to the current conversation.")
@click.argument("text")
@click.option(
    "-s",
    "--sender",
    type=click.Choice(["self", "other"]),
    default="self",
    show_default=True,
)
@click.option("--after", "after_id", help="Insert after this message id.")
def say(text: str, sender: str, after_id: str | None) -> None:
    with _simulator() as sim:
        message = sim.repository.add_message(after_id)
        sim.repository.update_message(message.id, message=text, sender=sender)
        click.echo(message.id)


@main.command(help="Update the recipient shown in the header.")
@click.option("--name")
@click.option("--location")
def recipient(name: str | None, location: str | None) -> None:
    with _simulator() as sim:
        changed = sim.repository.update_recipient(name=name, location=location)
        current = sim.repository.get_recipient()
        click.echo(f"{current.name}, {current.location}")
        if not changed:
            click.echo("(unchanged)", err=True)


@main.command(help="Reset the current conversation to the demo messages.")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
def clear(yes: bool) -> None:
    if not yes and not click.confirm("Reset the current conversation?"):
        click.echo("Aborted.")
        return
    with _simulator() as sim:
        sim.repository.clear()


@main.command(help="Export the current conversation as JSON.")
@click.option("-o", "--output", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--compact", is_flag=True, help="No indentation.")
def export(output: Path | None, compact: bool) -> None:
    with _simulator() as sim:
        text = sim.repository.export_json(pretty=not compact)
    if output is None:
        click.echo(text)
    else:
        output.write_text(text, encoding="utf-8")
        click.echo(f"Exported to {output}")


@main.command(name="import", help="Import a JSON conversation as a new thread.")
@click.argument("source", type=click.File("r", encoding="utf-8"))
def import_thread(source) -> None:
    text = source.read()
    with _simulator() as sim:
        outcome = sim.repository.import_json(text)
    if outcome.thread is None:
        raise click.ClickException(f"Import failed: {outcome.error}")
    if outcome.dropped:
        click.echo(f"Skipped {outcome.dropped} invalid message(s).", err=True)
    click.echo(outcome.thread.id)


# ── Server / config ──────────────────────────────────────────────


@main.command(help="Run the HTTP API for the browser UI.")
@click.option("--host", help="Bind address (default from config).")
@click.option("--port", type=int, help="Port (default from config).")
def serve(host: str | None, port: int | None) -> None:
    import uvicorn

    from .server import create_app

    config = load_config()
    setup_logging(config.logging.level, to_file=config.logging.file)
    sim = build_simulator(config, scheduler=AsyncioScheduler())
    uvicorn.run(
        create_app(sim),
        host=host or config.server.host,
        port=port or config.server.port,
        log_config=None,
    )


@main.command(name="config", help="Show the configuration (or write defaults).")
@click.option("--init", "init_file", is_flag=True, help="Write simulator.yaml.")
def show_config(init_file: bool) -> None:
    path = config_path()
    config = load_config()
    if init_file:
        if path.exists() and not click.confirm(
            f"{path} already exists. Overwrite?", default=False
        ):
            click.echo("Aborted.")
            return
        save_config(config)
        click.echo(f"Saved to {path}")
        return
    click.echo(f"# {path}{'' if path.exists() else ' (not created, defaults)'}")
    click.echo(yaml.dump(config.model_dump(), default_flow_style=False, sort_keys=False))


if __name__ == "__main__":
    sys.exit(main())
