"""Command-line helpers for listing access points, toggling LEDs and running schedules."""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
from collections.abc import Iterable
from contextlib import suppress

from .state import AppState, build_app_state
from .unifi.unifi import UniFiAPIError
from .unifi.utils import configure_logging, logger

configure_logging()


def _load_state() -> AppState:
    state = AppState()
    state.load_persisted_state()
    return state


def _dump_json(data: object, *, print_fn=print) -> None:
    formatted = json.dumps(data, indent=2, sort_keys=True, default=str)
    print_fn(formatted)


def list_devices(*, print_fn=print) -> None:
    """List all access points managed by the controller."""
    state = _load_state()
    try:
        devices = state.directory.fetch_devices(state.config)
        if not devices:
            print_fn("No access points found.")
            logger.warning("No access points returned by controller")
            return

        _dump_json(
            {
                "total": len(devices),
                "devices": [
                    {
                        "device_id": device.device_id,
                        "name": device.name,
                        "mac": device.mac_address,
                        "ip": device.ip_address,
                        "led": "on" if device.led_enabled else "off",
                        "online": device.is_online,
                    }
                    for device in devices
                ],
            },
            print_fn=print_fn,
        )
    except UniFiAPIError as exc:
        logger.exception("Failed to list access points")
        raise SystemExit(f"UniFi API error: {exc}") from exc
    finally:
        state.client.close()


def set_led(enable: bool, *, device_id: str | None = None, print_fn=print) -> None:
    """Toggle one device's LED override, or the site-wide LED setting."""
    state = _load_state()
    target = device_id or "all devices"
    action = "on" if enable else "off"
    logger.bind(target=target, action=action).info("Starting LED toggle")
    try:
        if device_id:
            state.led.toggle_device_led(state.config, device_id, enable)
        else:
            state.led.toggle_led(state.config, enable)
        print_fn(f"LEDs turned {action} for {target}.")
    except UniFiAPIError as exc:
        logger.exception("Failed to toggle LEDs for {}", target)
        raise SystemExit(f"UniFi API error: {exc}") from exc
    finally:
        state.client.close()


def _format_seconds(seconds: float) -> str:
    total = int(seconds)
    return f"{total // 3600:02d}:{total % 3600 // 60:02d}"


def list_schedules(*, print_fn=print) -> None:
    """Print the persisted schedules."""
    state = _load_state()
    schedules = state.schedules
    if not schedules:
        print_fn("No schedules configured.")
        return

    _dump_json(
        {
            "total": len(schedules),
            "schedules": [
                {
                    "id": schedule.id,
                    "name": schedule.name,
                    "enabled": schedule.enabled,
                    "devices": schedule.assignments,
                    "rules": [
                        {
                            "day": rule.day.value,
                            "on": _format_seconds(rule.on_time),
                            "off": _format_seconds(rule.off_time),
                        }
                        for rule in schedule.rules
                    ],
                }
                for schedule in schedules
            ],
        },
        print_fn=print_fn,
    )


async def serve(stop: asyncio.Event | None = None) -> None:
    """Run the scheduler until ``stop`` is set or the process is signalled."""
    stop = stop or asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(signum, stop.set)

    state = build_app_state()
    await state.start()
    logger.bind(schedule_count=len(state.schedules)).info("Scheduler running")
    try:
        await stop.wait()
    finally:
        await state.close()


def main(argv: Iterable[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="Control UniFi access point LEDs and run weekly LED schedules."
    )
    parser.add_argument(
        "--list-devices",
        action="store_true",
        help="List all access points managed by the UniFi controller.",
    )
    parser.add_argument(
        "--led",
        choices=("on", "off"),
        help="Turn LEDs on or off (site-wide unless --device is given).",
    )
    parser.add_argument(
        "-d",
        "--device",
        help="Controller device id to target with --led.",
    )
    parser.add_argument(
        "--list-schedules",
        action="store_true",
        help="List the persisted LED schedules.",
    )
    parser.add_argument(
        "--run",
        action="store_true",
        help="Run the LED scheduler until interrupted.",
    )
    args = parser.parse_args(list(argv) if argv is not None else None)
    if args.list_devices:
        list_devices(print_fn=print)
        return
    if args.led:
        set_led(args.led == "on", device_id=args.device, print_fn=print)
        return
    if args.list_schedules:
        list_schedules(print_fn=print)
        return
    if args.run:
        asyncio.run(serve())
        return
    if args.device:
        parser.error("--device requires --led")
    parser.print_help()


__all__ = ["main", "list_devices", "set_led", "list_schedules", "serve"]
