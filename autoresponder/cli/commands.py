"""CLI commands for autoresponder."""

import json

import typer
from rich.console import Console
from rich.table import Table

from autoresponder import __logo__, __version__

app = typer.Typer(
    name="autoresponder",
    help=f"{__logo__} autoresponder - WhatsApp AI auto-responder",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} autoresponder v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """autoresponder - WhatsApp AI auto-responder."""


# ============================================================================
# Onboard
# ============================================================================


@app.command()
def onboard():
    """Create a default configuration file."""
    from autoresponder.config.loader import get_config_path, save_config
    from autoresponder.config.schema import Config

    config_path = get_config_path()

    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    save_config(Config(), config_path)
    console.print(f"[green]✓[/green] Created config at {config_path}")

    console.print(f"\n{__logo__} autoresponder is ready!")
    console.print("\nNext steps:")
    console.print(f"  1. Add an OpenAI or Gemini API key to [cyan]{config_path}[/cyan]")
    console.print("     or set [cyan]AUTORESPONDER_PROVIDERS__OPENAI__API_KEY[/cyan]")
    console.print("  2. Start the WhatsApp bridge, then run: [cyan]autoresponder run[/cyan]")


# ============================================================================
# Run
# ============================================================================


@app.command()
def run(
    host: str = typer.Option(None, "--host", help="Admin server host"),
    port: int = typer.Option(None, "--port", "-p", help="Admin server port"),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging"),
):
    """Start the responder and the admin server."""
    import uvicorn

    from autoresponder.config.loader import get_config_path, load_config
    from autoresponder.logging_setup import setup_logging
    from autoresponder.server.main import create_app

    config = load_config()
    setup_logging("DEBUG" if verbose else config.logging.level)

    host = host or config.gateway.host
    port = port or config.gateway.port

    services = config.configured_services()
    if services:
        console.print(f"[green]✓[/green] AI services: {', '.join(services)}")
    else:
        console.print("[yellow]Warning: No AI service has an API key; messages will be dropped[/yellow]")
    if config.whatsapp.enabled:
        console.print(f"[green]✓[/green] WhatsApp bridge: {config.whatsapp.bridge_url}")
    else:
        console.print("[yellow]Warning: WhatsApp disabled[/yellow]")

    console.print(f"{__logo__} Admin server on http://{host}:{port}")

    app_ = create_app(config, config_path=get_config_path())
    uvicorn.run(app_, host=host, port=port, log_level="debug" if verbose else "info")


# ============================================================================
# Status
# ============================================================================


@app.command()
def status():
    """Show configuration status."""
    from autoresponder.config.loader import get_config_path, load_config

    config_path = get_config_path()

    console.print(f"{__logo__} autoresponder status\n")
    console.print(f"Config: {config_path} {'[green]✓[/green]' if config_path.exists() else '[red]✗[/red]'}")

    config = load_config()

    table = Table(title="AI Services")
    table.add_column("Service", style="cyan")
    table.add_column("Model", style="yellow")
    table.add_column("Key", style="green")
    for name in config.ai.services:
        provider = config.get_provider(name)
        if provider is None:
            table.add_row(name, "-", "[red]unknown service[/red]")
            continue
        table.add_row(
            name,
            provider.model,
            "✓" if provider.api_key else "[dim]not set[/dim]",
        )
    console.print(table)

    wa = config.whatsapp
    console.print(f"\n[bold]WhatsApp:[/bold] {'enabled' if wa.enabled else 'disabled'} ({wa.bridge_url})")
    console.print(f"  Reject calls: {'yes' if wa.reject_calls else 'no'}")

    responder = config.responder
    console.print("\n[bold]Replies:[/bold]")
    console.print(f"  Ephemeral handling: {'on' if responder.ephemeral_message_handling else 'off'}")
    console.print(f"  Audio responses: {'on' if responder.audio_responses else 'off'}")
    console.print(
        f"  Rate limit: {config.rate_limit.max_messages} msgs / {config.rate_limit.window_seconds:g}s"
    )
    console.print(f"  Admin server: http://{config.gateway.host}:{config.gateway.port}")


# ============================================================================
# Config Commands
# ============================================================================


config_app = typer.Typer(help="Inspect configuration")
app.add_typer(config_app, name="config")


@config_app.command("show")
def config_show(
    reveal: bool = typer.Option(False, "--reveal", help="Show API keys"),
):
    """Print the effective configuration as JSON."""
    from autoresponder.config.loader import load_config
    from autoresponder.server.routers.config import redact_config

    config = load_config()
    data = config.model_dump(mode="json") if reveal else redact_config(config)
    console.print_json(json.dumps(data))


@config_app.command("path")
def config_path():
    """Print the config file location."""
    from autoresponder.config.loader import get_config_path

    console.print(str(get_config_path()))
