"""Entry point for the healthcheck service monitor."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import uvicorn
from rich.console import Console
from rich.panel import Panel

from .config import settings
from .health.engine import Health, run_check
from .notifications import NotificationManager
from .services.registry import ConfigError, MonitorConfig, load_config

console = Console()
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)


def run_server(config: MonitorConfig) -> None:
    """Start the FastAPI server; monitoring starts in its lifespan."""
    port = config.web_port or settings.api_port
    console.print(Panel(
        f"Monitoring {len(config.enabled_services())} services, API on port {port}",
        title="healthcheck", style="bold green",
    ))
    uvicorn.run(
        "healthcheck.api.server:app",
        host=settings.api_host,
        port=port,
        reload=False,
    )


def run_test_service(config: MonitorConfig, service_id: str) -> int:
    """Probe one service once and report the outcome as an exit code."""
    service = config.services.get(service_id)
    if service is None:
        console.print(f"[red]Service with ID '{service_id}' not found[/red]")
        return 1

    console.print(f"Testing service: [bold]{service.name}[/bold]")
    console.print(f"Description: {service.description}")
    if not service.enabled:
        console.print("[yellow]Warning: Service is disabled in configuration[/yellow]")

    with console.status(f"[bold green]Running {service.check.kind} check..."):
        outcome = run_check(service.check)

    if outcome.health is Health.SUCCESS:
        console.print("[green]✓ Service check PASSED[/green]")
        return 0
    if outcome.health is Health.FAILURE:
        console.print(f"[red]✗ Service check FAILED: {outcome.message}[/red]")
        return 1
    console.print("[yellow]? Service check returned UNKNOWN state[/yellow]")
    return 2


async def _send_test_notification(config: MonitorConfig, kind: str, message: str) -> None:
    manager = NotificationManager.from_config(config)
    try:
        await manager.send_custom("CLI", message, success=(kind == "success"))
    finally:
        await manager.close()


def run_notify(config: MonitorConfig, kind: str, message: str) -> int:
    """Send a test notification through the configured channels."""
    asyncio.run(_send_test_notification(config, kind, message))
    label = "Success" if kind == "success" else "Error"
    console.print(f"{label} message sent")
    return 0


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Service health monitor with Telegram alerts")
    parser.add_argument(
        "-c", "--config",
        help=f"Path to the services file (default: $HEALTHCHECK_CONFIG or {settings.healthcheck_config})",
    )
    sub = parser.add_subparsers(dest="command")

    # Server mode
    sub.add_parser("serve", help="Start monitoring and the API server")

    test_parser = sub.add_parser("test-service", help="Probe a single service once")
    test_parser.add_argument("id", help="ID of the service to test")

    notify_parser = sub.add_parser("notify", help="Send a test notification")
    notify_parser.add_argument("type", choices=["success", "error"], help="Message type")
    notify_parser.add_argument("message", help="Message text to send")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.config:
        settings.healthcheck_config = args.config

    try:
        config = load_config(Path(settings.healthcheck_config))
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    if args.command == "serve":
        run_server(config)
    elif args.command == "test-service":
        sys.exit(run_test_service(config, args.id))
    elif args.command == "notify":
        sys.exit(run_notify(config, args.type, args.message))


if __name__ == "__main__":
    main()
