"""CLI for webhook ingestion."""

import sys

import click
import uvicorn
from rich.console import Console

from .config import IngestConfig

console = Console()


@click.group()
def cli():
    """Webhook ingestion CLI."""
    pass


@cli.command()
@click.option("--host", help="Host to bind to (overrides environment variable)")
@click.option("--port", type=int, help="Port to bind to (overrides environment variable)")
@click.option("--reload", is_flag=True, help="Enable auto-reload")
def serve(host, port, reload):
    """Start the webhook ingestion server."""
    config = IngestConfig.from_env()
    host = host or config.host
    port = port or config.port
    try:
        console.print("🚀 Starting webhook ingestion server...")
        console.print(f"📡 Host: {host}")
        console.print(f"🔌 Port: {port}")
        console.print(f"🔄 Reload: {reload}")

        uvicorn.run(
            "deprelay.ingest.server:app",
            host=host,
            port=port,
            reload=reload,
            log_level="info"
        )

    except KeyboardInterrupt:
        console.print("⏹️  Server stopped by user")
    except Exception as e:
        console.print(f"❌ Server failed: {e}", style="red")
        sys.exit(1)


@cli.command()
def config():
    """Show current configuration."""
    try:
        config = IngestConfig.from_env()

        console.print("📋 Ingest Configuration:")
        console.print(f"  Webhook Secret: {'*' * len(config.webhook_secret) if config.webhook_secret else 'Not set'}")
        console.print(f"  Release Endpoint: {config.release_endpoint}")
        console.print(f"  Build Endpoint: {config.build_endpoint}")
        console.print(f"  Host: {config.host}")
        console.print(f"  Port: {config.port}")
        console.print(f"  Log Directory: {config.log_dir}")
        console.print(f"  Redis URL: {config.redis_url}")
        console.print(f"  Config Path: {config.config_path}")

    except Exception as e:
        console.print(f"❌ Failed to load configuration: {e}", style="red")
        sys.exit(1)


if __name__ == "__main__":
    cli()
