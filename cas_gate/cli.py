"""
cas-gate CLI for running and checking the authentication gate.
"""

import sys
from typing import Optional
import typer
import httpx
from rich.console import Console
from rich.table import Table

from cas_gate.core.config import Settings, create_gate_config, load_merged_config
from cas_gate.core.exceptions import ConfigurationError
from cas_gate.core.request import GateRequest
from cas_gate.core.service_url import ServiceURLResolver

app = typer.Typer(
    name="cas-gate",
    help="CAS single sign-on authentication gate",
    add_completion=False
)

console = Console()


def load_settings(config_file: Optional[str]) -> Settings:
    """Load settings, exiting with a message if they describe an invalid gate."""
    settings = load_merged_config(config_file)
    try:
        create_gate_config(settings)
    except ConfigurationError as e:
        console.print(f"[red]✗[/red] {e}")
        sys.exit(1)
    return settings


@app.command()
def serve(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Config file path"),
    host: Optional[str] = typer.Option(None, "--host", help="Host to bind to"),
    port: Optional[int] = typer.Option(None, "--port", help="Port to bind to"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Log level"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload")
):
    """Run the gate in front of the application."""
    from cas_gate.main import run_server

    settings = load_settings(config)
    if host:
        settings.host = host
    if port:
        settings.port = port
    if log_level:
        settings.log_level = log_level

    run_server(settings, reload=reload)


@app.command("check-config")
def check_config(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Config file path")
):
    """Validate the configuration and show the resulting gate settings."""
    settings = load_settings(config)
    gate_config = create_gate_config(settings)

    table = Table(title="Gate Configuration")
    table.add_column("Setting", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")

    table.add_row("login_url", gate_config.login_url or "-")
    table.add_row("validate_url", gate_config.validate_url)
    table.add_row("service_url", gate_config.service_url or "-")
    table.add_row("server_name", gate_config.server_name or "-")
    table.add_row("renew", str(gate_config.renew))
    table.add_row("gateway", str(gate_config.gateway))
    table.add_row("authorized_proxies", " ".join(gate_config.authorized_proxies) or "-")
    table.add_row("url_pattern_exclude", " ".join(gate_config.url_pattern_exclude) or "-")
    table.add_row("proxy_callback_url", gate_config.proxy_callback_url or "-")
    table.add_row("logout_callback_url", gate_config.logout_callback_url or "-")
    table.add_row("wrap_request", str(gate_config.wrap_request))
    table.add_row("logout_store", settings.logout_store)
    table.add_row("session_store", settings.session_store)

    console.print(table)
    console.print("[green]✓[/green] Configuration is valid")


@app.command("login-url")
def login_url(
    url: str = typer.Argument(..., help="URL of the protected resource"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Config file path")
):
    """Print the CAS login redirect the gate would issue for a URL."""
    settings = load_settings(config)
    resolver = ServiceURLResolver(create_gate_config(settings))

    try:
        location = resolver.login_redirect(GateRequest.from_url(url))
    except ConfigurationError as e:
        console.print(f"[red]✗[/red] {e}")
        sys.exit(1)

    print(location)


@app.command()
def logout(
    gate_url: str = typer.Argument(..., help="Any URL served behind the gate"),
    ticket: str = typer.Argument(..., help="Service ticket to log out, e.g. ST-1234"),
    insecure: bool = typer.Option(False, "--insecure-skip-tls-verify", help="Skip TLS verification")
):
    """Send a single-logout notification for a ticket, as CAS does."""
    try:
        with httpx.Client(verify=not insecure, timeout=30.0, follow_redirects=False) as client:
            response = client.get(gate_url, params={"ticket": f"-{ticket}"})
            response.raise_for_status()
        console.print(f"[green]✓[/green] Ticket '{ticket}' queued for logout")
    except httpx.HTTPStatusError as e:
        console.print(f"[red]✗[/red] Logout notification failed: {e.response.text}")
        sys.exit(1)
    except httpx.HTTPError as e:
        console.print(f"[red]✗[/red] Logout notification failed: {e}")
        sys.exit(1)


def main():
    """Main entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
