"""Command-line interface for arrowctl.

Runs the controller (control server, discovery and operator API) or a
target, and talks to a running controller through its operator API.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="arrowctl",
        description="LAN arrow-key remote control",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/arrowctl.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    controller_parser = subparsers.add_parser(
        "controller", help="Run the controller and its operator API"
    )
    controller_parser.add_argument("--port", type=int, default=None, help="Control (WebSocket) port")
    controller_parser.add_argument("--api-port", type=int, default=None, help="Operator API port")
    controller_parser.add_argument(
        "--no-discovery", action="store_true", help="Disable UDP announcements"
    )

    target_parser = subparsers.add_parser("target", help="Run a target device")
    target_parser.add_argument(
        "--host", type=str, default=None,
        help="Controller address (discovered over UDP when omitted)",
    )
    target_parser.add_argument("--port", type=int, default=None, help="Controller control port")
    target_parser.add_argument(
        "--auto-accept", action="store_true", help="Accept pairing without asking"
    )
    target_parser.add_argument(
        "--backend", choices=["mock", "pynput"], default=None, help="Key-press backend"
    )

    send_parser = subparsers.add_parser("send", help="Send an arrow command to a device")
    send_parser.add_argument("device_id", help="Target device id")
    send_parser.add_argument("direction", choices=["left", "right"])
    send_parser.add_argument("--repeat", type=int, default=1, help="Number of presses")
    send_parser.add_argument("--hold", type=int, default=0, help="Hold time in milliseconds")

    devices_parser = subparsers.add_parser("devices", help="List devices known to the controller")
    devices_parser.add_argument(
        "--state", choices=["all", "connected", "paired"], default="all"
    )

    unpair_parser = subparsers.add_parser("unpair", help="Revoke a device's pairing")
    unpair_parser.add_argument("device_id", help="Target device id")

    return parser.parse_args(argv)


def _run_controller(settings, args) -> None:
    """Run the controller under uvicorn; the API lifespan starts it."""
    import uvicorn

    from arrowctl.controller.api import create_app
    from arrowctl.controller.app import ControllerApp

    if args.port is not None:
        settings.controller.control_port = args.port
    if args.api_port is not None:
        settings.api.port = args.api_port
    if args.no_discovery:
        settings.discovery.enabled = False

    controller = ControllerApp(config=settings.controller, discovery=settings.discovery)
    print(f"Controller: {controller.info.name} ({controller.info.id})")
    print(f"  IP:             {controller.info.ip}")
    print(f"  Control port:   {settings.controller.control_port}")
    print(f"  Discovery port: {settings.discovery.port if settings.discovery.enabled else 'off'}")
    print(f"  Operator API:   http://{settings.api.host}:{settings.api.port}")

    uvicorn.run(
        create_app(controller),
        host=settings.api.host,
        port=settings.api.port,
        log_level=settings.logging.level.lower(),
    )


async def _prompt_pairing(token: str) -> bool:
    """Ask the operator on the terminal whether to pair."""
    print("\n" + "=" * 60)
    print("PAIRING REQUEST")
    print(f"Token: {token}")
    print("=" * 60)
    answer = await asyncio.to_thread(input, "Accept pairing? (Y/N): ")
    return answer.strip().lower() in ("y", "yes")


async def _run_target(settings, args) -> int:
    from arrowctl.domain.events import ClientEvent, ClientEventKind
    from arrowctl.domain.models import ConnectionStatus
    from arrowctl.keyboard import KeyPresserError, create_key_presser
    from arrowctl.target.app import TargetDevice

    cfg = settings.target
    if args.host:
        cfg.controller_host = args.host
    if args.port is not None:
        cfg.controller_port = args.port
    if args.auto_accept:
        cfg.auto_accept_pairing = True
    backend = args.backend or settings.keyboard.backend

    try:
        keys = create_key_presser(backend, repeat_delay=settings.keyboard.repeat_delay)
        target = TargetDevice(
            config=cfg,
            key_presser=keys,
            confirm_pairing=None if cfg.auto_accept_pairing else _prompt_pairing,
        )
        print(f"Target: {target.info.name} ({target.info.id})")
        print(f"  IP:          {target.info.ip}")
        print(f"  Key backend: {backend}")

        # Set once the client will not reconnect on its own
        given_up = asyncio.Event()

        def _watch(event: ClientEvent) -> None:
            if event.kind == ClientEventKind.RECONNECT_EXHAUSTED:
                given_up.set()
            elif event.kind == ClientEventKind.STATUS_CHANGED and event.status is not None:
                print(f"Status: {event.status.value}")
                if event.status == ConnectionStatus.DISCONNECTED and not cfg.auto_reconnect:
                    given_up.set()

        target.client.subscribe(_watch)
        if not await target.start() and target.client.controller_address is None:
            await target.stop()
            return 1

        try:
            await given_up.wait()
            return 1
        finally:
            await target.stop()
    except KeyPresserError as e:
        logger.error("Key backend %s unavailable: %s", e.backend, e)
        return 1


async def _api_call(settings, args) -> int:
    from arrowctl.controller.http_client import ControllerApiClient, ControllerApiError

    try:
        async with ControllerApiClient(settings.api.base_url, settings.api.timeout) as api:
            if args.command == "send":
                result = await api.send_arrow(args.device_id, args.direction, args.repeat, args.hold)
                print(f"Sent {result['commandType']} to {args.device_id}")
            elif args.command == "devices":
                devices = await api.list_devices(args.state)
                if not devices:
                    print("No devices")
                for d in devices:
                    line = f"{d['id']}  {d['name']:<24} {d['ip']:<15} {d['status']}"
                    if d.get("pairingToken"):
                        line += f"  token={d['pairingToken']}"
                    print(line)
            elif args.command == "unpair":
                device = await api.unpair(args.device_id)
                print(f"Unpaired {device['id']} ({device['status']})")
    except ControllerApiError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the arrowctl CLI."""
    args = parse_args(argv)

    if args.command is None:
        parse_args(["--help"])
        return

    from arrowctl.config.settings import load_settings
    from arrowctl.utils.logging import setup_logging

    settings = load_settings(args.config)
    setup_logging(settings.logging, verbose=args.verbose)

    if args.command == "controller":
        logger.info("Starting controller")
        _run_controller(settings, args)

    elif args.command == "target":
        logger.info("Starting target")
        try:
            code = asyncio.run(_run_target(settings, args))
        except KeyboardInterrupt:
            code = 0
        if code:
            sys.exit(code)

    elif args.command in ("send", "devices", "unpair"):
        code = asyncio.run(_api_call(settings, args))
        if code:
            sys.exit(code)


if __name__ == "__main__":
    main()
