"""CLI for worker processing."""

import asyncio
import os
import sys

import click
from rich.console import Console
from rich.table import Table

from ..common import setup_logging
from ..config import AppConfig
from ..models import DispatchRequest
from ..models.queue import ChannelAddress, EventChannel
from .config import WorkerConfig
from .consumer import EventConsumer
from .pr_worker import PullRequestWorker

console = Console()


@click.group()
def cli():
    """Worker processing CLI."""
    pass


@cli.command()
@click.option("--role", type=click.Choice(["receiver", "sender"]), help="Side of the relay to serve (overrides environment variable)")
@click.option("--redis-url", help="Redis URL (overrides environment variable)")
@click.option("--batch-size", help="Number of messages to process in each batch (overrides environment variable)")
@click.option("--poll-interval", help="Poll interval in milliseconds (overrides environment variable)")
@click.option("--config-path", help="Configuration file path (overrides environment variable)")
def run(role, redis_url, batch_size, poll_interval, config_path):
    """Run a consumer for this account's channel."""
    try:
        config = WorkerConfig.from_env()

        # Override with command line arguments if provided
        if role:
            config.role = role
        if redis_url:
            config.redis_url = redis_url
        if batch_size:
            config.batch_size = int(batch_size)
        if poll_interval:
            config.poll_interval_ms = int(poll_interval)
        if config_path:
            config.config_path = config_path

        setup_logging(config.log_dir)
        app_config = AppConfig.load(config.config_path)

        console.print("🚀 Starting worker...")
        console.print(f"🎭 Role: {config.role}")
        console.print(f"🔗 Redis: {config.redis_url}")
        console.print(f"📦 Batch size: {config.batch_size}")
        console.print(f"⏱️  Poll interval: {config.poll_interval_ms}ms")

        consumer = EventConsumer.from_config(config, app_config)
        asyncio.run(consumer.run())

    except KeyboardInterrupt:
        console.print("⏹️  Worker stopped by user")
    except Exception as e:
        console.print(f"❌ Worker failed: {e}", style="red")
        sys.exit(1)


@cli.command()
@click.option("--config-path", help="Configuration file path (overrides environment variable)")
def execute(config_path):
    """Run one pull-request execution described by the environment."""
    config = WorkerConfig.from_env()
    setup_logging(config.log_dir)
    try:
        app_config = AppConfig.load(config_path or config.config_path)
        request = DispatchRequest.from_environment(dict(os.environ))
    except Exception as e:
        console.print(f"❌ Invalid execution parameters: {e}", style="red")
        sys.exit(2)

    worker = PullRequestWorker.from_config(app_config.repository, workspace_root=config.workspace_root)
    result = worker.run(request)

    # stdout carries only the result so the launcher can parse it
    click.echo(result.model_dump_json())
    sys.exit(0 if result.succeeded else 1)


@cli.command()
def config():
    """Show current configuration."""
    try:
        config = WorkerConfig.from_env()

        console.print("📋 Worker Configuration:")
        console.print(f"  Role: {config.role}")
        console.print(f"  Redis URL: {config.redis_url}")
        console.print(f"  Batch Size: {config.batch_size}")
        console.print(f"  Poll Interval: {config.poll_interval_ms}ms")
        console.print(f"  Config Path: {config.config_path}")
        console.print(f"  Workspace Root: {config.workspace_root or 'system temp'}")
        console.print(f"  Max Concurrency: {config.max_concurrency}")
        console.print(f"  Log Directory: {config.log_dir}")

    except Exception as e:
        console.print(f"❌ Failed to load configuration: {e}", style="red")
        sys.exit(1)


@cli.command()
@click.option("--config-path", help="Configuration file path (overrides environment variable)")
def stats(config_path):
    """Show stream statistics for both account channels."""
    try:
        config = WorkerConfig.from_env()
        relay = AppConfig.load(config_path or config.config_path).relay

        table = Table(title="Channel Statistics")
        table.add_column("Channel", style="cyan")
        table.add_column("Length", style="green")
        table.add_column("Pending", style="yellow")
        table.add_column("Consumers", style="magenta")
        table.add_column("Last ID", style="white")

        for account in (relay.receiver_account, relay.sender_account):
            channel = EventChannel(ChannelAddress(account, relay.region), config.redis_url)
            info = channel.get_queue_stats()
            table.add_row(
                str(channel.address),
                str(info.get("stream_length", "-")),
                str(info.get("pending_messages", "-")),
                str(info.get("consumers", "-")),
                str(info.get("last_generated_id", "-")),
            )

        console.print(table)

    except Exception as e:
        console.print(f"❌ Failed to read channel statistics: {e}", style="red")
        sys.exit(1)


if __name__ == "__main__":
    cli()
