#!/usr/bin/env python3
"""
Switchboard CLI - operate a running Switchboard service.

Commands:
    config        Manage local configuration
    health        Check service health
    providers     List AI providers and your access to them
    plans         List subscription plans
    subscription  Show your subscription
    usage         Show token usage
    ask           Send a prompt
    mcp           Tool integrations
    serve         Run the API server
"""
import json
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from switchboard.cli import api
from switchboard.cli.api import APIError, ConfigError, ServiceUnreachable

app = typer.Typer(
    name="switchboard",
    help="Switchboard CLI - multi-provider AI routing",
    no_args_is_help=True,
)
config_app = typer.Typer(help="Manage local configuration (~/.switchboard)")
mcp_app = typer.Typer(help="Tool integrations")

app.add_typer(config_app, name="config")
app.add_typer(mcp_app, name="mcp")

console = Console()
err_console = Console(stderr=True)


def api_request(method: str, endpoint: str, data: dict = None,
                authenticated: bool = True, timeout: int = 30) -> dict:
    """Make API request with CLI error handling."""
    try:
        return api.api_request(method, endpoint, data, timeout=timeout, authenticated=authenticated)
    except APIError as e:
        err_console.print(f"[red]Error {e.status_code}:[/red] {e.detail}")
        raise typer.Exit(1)
    except ConfigError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    except ServiceUnreachable as e:
        err_console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


def mask_secret(value: str) -> str:
    if not value:
        return ""
    return value[:8] + "..." if len(value) > 12 else "***"


def display_value(key: str, value: str) -> str:
    return mask_secret(value) if key == "token" or "key" in key.lower() else value


# =============================================================================
# Config Commands
# =============================================================================

@config_app.command("init")
def config_init():
    """Initialize config directory and file.

    Example: switchboard config init
    """
    if api.CONFIG_FILE.exists():
        console.print(f"Config already exists: [cyan]{api.CONFIG_FILE}[/cyan]")
        return

    api.save_config({"url": api.DEFAULT_URL})
    console.print(f"[green]✓[/green] Created: [cyan]{api.CONFIG_FILE}[/cyan]")
    console.print("\nAdd your token:")
    console.print("  [cyan]switchboard config set token <jwt>[/cyan]")


@config_app.command("show")
def config_show(
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show current configuration."""
    config = api.load_config()
    if not config:
        console.print(f"No config at [cyan]{api.CONFIG_FILE}[/cyan]")
        console.print("Run: [cyan]switchboard config init[/cyan]")
        return

    masked = {k: display_value(k, v) for k, v in config.items()}
    if as_json:
        console.print(json.dumps(masked, indent=2))
        return

    console.print(f"[bold]Config:[/bold] {api.CONFIG_FILE}\n")
    for k, v in masked.items():
        console.print(f"  {k}: [cyan]{v}[/cyan]")


@config_app.command("set")
def config_set(
    key: str = typer.Argument(..., help="Config key (url, token)"),
    value: str = typer.Argument(..., help="Config value"),
):
    """Set a configuration value.

    Example: switchboard config set url http://localhost:8780
    """
    config = api.load_config()
    config[key] = value
    api.save_config(config)
    console.print(f"[green]✓[/green] Set {key} = [cyan]{display_value(key, value)}[/cyan]")


@config_app.command("get")
def config_get(
    key: str = typer.Argument(..., help="Config key"),
    raw: bool = typer.Option(False, "--raw", help="Output raw value"),
):
    """Get a configuration value."""
    value = api.load_config().get(key)
    if value is None:
        err_console.print(f"[red]Key not found:[/red] {key}")
        raise typer.Exit(1)

    if raw:
        print(value)
    else:
        console.print(f"{key}: [cyan]{display_value(key, value)}[/cyan]")


# =============================================================================
# Service Commands
# =============================================================================

@app.command("health")
def health(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show full response"),
):
    """Check service health.

    Example: switchboard health
    """
    result = api_request("GET", "/health", authenticated=False, timeout=10)

    status = result.get("status", "unknown")
    service = result.get("service", "switchboard")
    if status == "healthy":
        console.print(f"[green]✓[/green] {service}: [green]{status}[/green]")
    else:
        console.print(f"[yellow]⚠[/yellow] {service}: [yellow]{status}[/yellow]")

    checks = result.get("checks", {})
    encryption = checks.get("encryption", {})
    if encryption.get("status") not in (None, "ok"):
        console.print(f"  Encryption: [yellow]{encryption.get('message', encryption.get('status'))}[/yellow]")
    for provider in checks.get("providers", {}).get("unhealthy_providers", []):
        console.print(f"  Provider [red]{provider}[/red] is unhealthy")

    if verbose:
        console.print(json.dumps(result, indent=2))


@app.command("providers")
def providers(
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List AI providers and your access to them."""
    result = api_request("GET", "/api/providers")
    items = result.get("providers", [])
    if as_json:
        console.print(json.dumps(items, indent=2))
        return

    table = Table()
    table.add_column("Provider", style="cyan")
    table.add_column("Access")
    table.add_column("Active")
    table.add_column("Own Key")
    table.add_column("Models", style="dim")
    for p in items:
        active = "[green]yes[/green]" if p.get("is_active") else "[red]no[/red]"
        own_key = "[green]yes[/green]" if p.get("has_user_api_key") else "-"
        models = ", ".join(m["id"] for m in p.get("models", []))
        table.add_row(p.get("id"), p.get("access_type"), active, own_key, models)
    console.print(table)


@app.command("plans")
def plans():
    """List subscription plans."""
    result = api_request("GET", "/api/plans", authenticated=False)

    table = Table()
    table.add_column("Plan", style="cyan")
    table.add_column("Monthly Price", justify="right")
    table.add_column("Monthly Tokens", justify="right")
    table.add_column("Daily Requests", justify="right")
    table.add_column("Providers", style="dim")
    for plan in result.get("plans", []):
        limits = plan.get("limits", {})
        table.add_row(
            plan.get("display_name"),
            f"{plan.get('price', {}).get('monthly', 0):.2f}",
            str(limits.get("monthly_tokens") or "unlimited"),
            str(limits.get("daily_requests") or "unlimited"),
            ", ".join(p["provider_id"] for p in plan.get("ai_providers", [])),
        )
    console.print(table)


@app.command("subscription")
def subscription():
    """Show your subscription."""
    result = api_request("GET", "/api/subscription")
    plan = result.get("plan") or {}
    usage = result.get("usage", {})

    console.print(f"[bold]Plan:[/bold] [cyan]{plan.get('display_name', 'none')}[/cyan] ({result.get('status')})")
    token_limit = usage.get("monthly_tokens_limit") or "unlimited"
    request_limit = usage.get("daily_requests_limit") or "unlimited"
    console.print(f"  Tokens this period: {usage.get('monthly_tokens_used', 0)} / {token_limit}")
    console.print(f"  Requests today: {usage.get('daily_requests_used', 0)} / {request_limit}")


@app.command("usage")
def usage(
    period: str = typer.Option("month", "--period", "-p", help="day, week or month"),
):
    """Show token usage by provider."""
    if period not in ("day", "week", "month"):
        err_console.print(f"[red]Invalid period:[/red] {period}")
        raise typer.Exit(1)
    result = api_request("GET", f"/api/subscription/usage?period={period}")

    table = Table(title=f"Usage ({period})")
    table.add_column("Provider", style="cyan")
    table.add_column("Requests", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost (USD)", justify="right")
    for provider_id, stats in sorted(result.get("provider_breakdown", {}).items()):
        table.add_row(provider_id, str(stats["requests"]), str(stats["tokens"]), f"{stats['cost']:.4f}")
    table.add_row(
        "[bold]total[/bold]",
        str(result.get("total_requests", 0)),
        str(result.get("total_tokens", 0)),
        f"{result.get('total_cost', 0.0):.4f}",
    )
    console.print(table)


@app.command("ask")
def ask(
    prompt: str = typer.Argument(..., help="Prompt to send"),
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help="Provider id (default: your global provider)"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model id"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show tokens, cost and latency"),
):
    """Send a prompt to a provider.

    Example: switchboard ask "Summarize SSE in one line" -p openai -m gpt-4o-mini
    """
    if bool(provider) != bool(model):
        err_console.print("[red]Error:[/red] --provider and --model must be given together")
        raise typer.Exit(1)
    if not provider:
        target = api_request("GET", "/api/ai/global-provider")
        provider, model = target["provider_id"], target["model_id"]

    result = api_request(
        "POST", "/api/ai/generate",
        {"message": prompt, "provider_id": provider, "model_id": model},
        timeout=180,
    )
    if result.get("status") != "completed":
        err_console.print(f"[red]{result.get('status', 'failed')}:[/red] {result.get('error')}")
        if result.get("requires_api_key"):
            err_console.print(f"  Add a key: [cyan]PUT /api/provider-keys/{provider}[/cyan]")
        if result.get("requires_upgrade"):
            err_console.print("  Upgrade your plan: [cyan]switchboard plans[/cyan]")
        raise typer.Exit(1)

    console.print(result.get("content", ""))
    if verbose:
        tokens = result.get("tokens", {})
        console.print(
            f"\n[dim]{provider}/{model} · {tokens.get('total', 0)} tokens · "
            f"${result.get('cost', 0):.6f} · {result.get('latency', 0)}ms[/dim]"
        )


# =============================================================================
# MCP Commands
# =============================================================================

@mcp_app.command("services")
def mcp_services():
    """List available tool integrations."""
    result = api_request("GET", "/api/mcp/services", authenticated=False)

    table = Table()
    table.add_column("Service", style="cyan")
    table.add_column("Auth")
    table.add_column("Tools", style="dim")
    for service in result.get("services", []):
        table.add_row(
            service.get("id"),
            service.get("auth_type"),
            ", ".join(t["id"] for t in service.get("tools", [])),
        )
    console.print(table)


# =============================================================================
# Server
# =============================================================================

@app.command("serve")
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Port"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
):
    """Run the API server."""
    import uvicorn

    from switchboard.config import settings

    uvicorn.run(
        "switchboard.main:app",
        host=host or settings.DEFAULT_HOST,
        port=port or settings.DEFAULT_PORT,
        reload=reload,
    )


def main():
    app()


if __name__ == "__main__":
    main()
