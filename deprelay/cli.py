#!/usr/bin/env python3
"""CLI tool for deprelay operations."""

import json
import sys

import click
from rich.console import Console
from rich.table import Table

from .adapter import normalize, normalize_build_event
from .config import AppConfig
from .ingest.cli import cli as ingest_cli
from .models import MalformedEvent
from .relay import route, route_build_failure
from .worker.cli import cli as worker_cli

console = Console()


@click.group()
@click.option("--config", default="config.yml", help="Configuration file path")
@click.pass_context
def cli(ctx, config):
    """Deprelay CLI tool for relaying releases and running workers."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config


cli.add_command(ingest_cli, name="ingest")
cli.add_command(worker_cli, name="worker")


@cli.command(name="route")
@click.argument("notification_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--build", is_flag=True, help="Treat the file as a build state notification")
@click.pass_context
def route_command(ctx, notification_file, build):
    """Show what the relay would do with a saved notification."""
    config_path = ctx.obj["config_path"]

    try:
        config = AppConfig.load(config_path)
        with open(notification_file, "r", encoding="utf-8") as fh:
            payload = json.load(fh)

        if build:
            event = normalize_build_event(payload)
            decision = route_build_failure(event, config.relay)
            event_id = f"build {event.build_id}"
        else:
            event = normalize(payload)
            decision = route(event, config.relay)
            event_id = event.release_key

        table = Table(title="Routing Decision")
        table.add_column("Event", style="cyan")
        table.add_column("Forward", style="green")
        table.add_column("Reason", style="yellow")
        table.add_column("Destination", style="magenta")
        table.add_row(
            event_id,
            "✅" if decision.forward else "❌",
            decision.reason,
            str(decision.destination) if decision.destination else "-",
        )
        console.print(table)

    except MalformedEvent as e:
        console.print(f"❌ Malformed notification: {e}", style="red")
        sys.exit(1)
    except Exception as e:
        console.print(f"❌ Error routing notification: {e}", style="red")
        sys.exit(1)


@cli.command()
@click.pass_context
def show_config(ctx):
    """Show the relay, repository, dispatch and feedback settings."""
    config_path = ctx.obj["config_path"]

    try:
        config = AppConfig.load(config_path)

        table = Table(title=f"Configuration ({config_path})")
        table.add_column("Section", style="cyan")
        table.add_column("Setting", style="green")
        table.add_column("Value", style="white")

        relay = config.relay
        table.add_row("relay", "sender account", relay.sender_account)
        table.add_row("relay", "receiver account", relay.receiver_account)
        table.add_row("relay", "region", relay.region)
        table.add_row("relay", "accepted formats", ", ".join(f.value for f in relay.accepted_formats))
        table.add_row("relay", "domain owner", relay.domain_owner or "any")

        repository = config.repository
        table.add_row("repository", "name", repository.name)
        table.add_row("repository", "clone url", repository.clone_url)
        table.add_row("repository", "host", repository.host)
        table.add_row("repository", "base branch", repository.base_branch or "default")
        table.add_row("repository", "token", "set" if repository.token else "Not set")

        dispatch = config.dispatch
        table.add_row("dispatch", "launcher", dispatch.launcher)
        if dispatch.launcher == "ecs":
            table.add_row("dispatch", "cluster", dispatch.cluster_ref)
            table.add_row("dispatch", "task definition", dispatch.task_definition_ref)
            table.add_row("dispatch", "subnets", ", ".join(dispatch.subnet_refs) or "None")
        table.add_row("dispatch", "launch attempts", str(dispatch.max_launch_attempts))
        table.add_row("dispatch", "timeout", f"{dispatch.execution_timeout_seconds}s")

        feedback = config.feedback
        table.add_row("feedback", "sink", feedback.sink)
        table.add_row("feedback", "dedup window", f"{feedback.dedup_window_seconds}s")

        console.print(table)

    except Exception as e:
        console.print(f"❌ Error loading configuration: {e}", style="red")
        sys.exit(1)


if __name__ == "__main__":
    cli()
