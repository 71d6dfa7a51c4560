"""
Main command-line interface for pyblade.

This script provides a CLI to query, control and monitor a Blade device.
"""

import argparse
import asyncio
import logging

from pyblade.connection import DEFAULT_PORT, BladeConnection
from pyblade.exceptions import BladeError
from pyblade.listener import LoggingListener
from pyblade.state import MixerStateCache


def parse_target(text: str) -> tuple[str, str | None]:
    """Split ``TARGET[:SUBADDR]`` as typed on the command line."""
    target, colon, subaddr = text.partition(":")
    return target, (subaddr if colon else None)


def parse_params(pairs: list[str]) -> list[tuple[str, str]]:
    """Parse ``KEY=VALUE`` arguments, keeping their order."""
    params = []
    for pair in pairs:
        key, equals, value = pair.partition("=")
        if not equals:
            raise argparse.ArgumentTypeError(f"Expected KEY=VALUE, got '{pair}'")
        params.append((key, value))
    return params


async def connect(hostname: str, port: int, poll_interval: float, cache: MixerStateCache) -> BladeConnection | None:
    print(f"Connecting to Blade at {hostname}:{port}...")
    connection = BladeConnection(hostname, port, heartbeat_interval=poll_interval, auto_reconnect=False)
    connection.register_listener(cache)
    if not await connection.async_connect():
        print(f"Error: could not connect: {connection.last_error}")
        connection.disconnect()
        return None
    return connection


async def show_status(hostname: str, port: int, poll_interval: float):
    """Query and display system information."""
    cache = MixerStateCache()
    connection = await connect(hostname, port, poll_interval, cache)
    if connection is None:
        return

    # <SYS?> is sent on connect, give the device a moment to answer
    print("Querying system info...")
    await asyncio.sleep(2)

    print("\nSystem:")
    print("-" * 60)
    if cache.system_info:
        for key, value in cache.system_info.items():
            print(f"{key:20s} {value}")
    else:
        print("no reply")
    print("-" * 60)

    if cache.umix:
        print("\nMixer:")
        print("-" * 60)
        for subaddr, params in sorted(cache.umix.items()):
            state = "ON " if cache.is_on(subaddr) else "off"
            print(f"{subaddr:8s} {state} {params}")
        print("-" * 60)

    connection.disconnect()


async def send_frame(hostname: str, port: int, poll_interval: float, target: str, pairs: list[str]):
    """Send a single frame and print what comes back."""
    cache = MixerStateCache()
    connection = await connect(hostname, port, poll_interval, cache)
    if connection is None:
        return

    connection.register_listener(PrintingListener())
    target_name, subaddr = parse_target(target)
    try:
        connection.send(target_name, subaddr, parse_params(pairs))
    except (BladeError, argparse.ArgumentTypeError) as e:
        print(f"Error: {e}")
        connection.disconnect()
        return

    # Wait for the device to respond
    await asyncio.sleep(2)

    connection.disconnect()
    print("Done")


async def monitor(hostname: str, port: int, poll_interval: float, subscriptions: list[str], duration: float):
    """Print every frame received, reconnecting as needed."""
    connection = BladeConnection(hostname, port, heartbeat_interval=poll_interval)
    connection.register_listener(PrintingListener())
    for subscription in subscriptions:
        subaddr, _, parameter = subscription.partition(":")
        connection.subscribe_mixer(subaddr, parameter or "ON")

    print(f"Monitoring {hostname}:{port}" + (f" for {duration}s" if duration else ", Ctrl-C to stop"))
    await connection.async_connect()
    try:
        if duration:
            await asyncio.sleep(duration)
        else:
            while True:
                await asyncio.sleep(3600)
    finally:
        connection.disconnect()


class PrintingListener(LoggingListener):

    def event_received(self, event):
        print(f"<- {event.raw}")

    def status_changed(self, state, status, message=None):
        print(f"[{status.name}] {message or state.name}")


def main():
    parser = argparse.ArgumentParser(description="Control a Blade audio routing engine")
    parser.add_argument("--host", default="192.168.1.100", help="Blade hostname or IP (default: 192.168.1.100)")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help=f"Control port (default: {DEFAULT_PORT})")
    parser.add_argument("--poll-interval", type=float, default=5.0,
                        help="Seconds between heartbeats, 0 to disable (default: 5)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # Status command
    subparsers.add_parser("status", help="Show system information")

    # Send command
    send_parser = subparsers.add_parser("send", help="Send a single frame")
    send_parser.add_argument("target", help="TARGET[:SUBADDR], e.g. UMIX:1.2")
    send_parser.add_argument("params", nargs="*", help="KEY=VALUE parameters, e.g. ON=1")

    # Monitor command
    monitor_parser = subparsers.add_parser("monitor", help="Print frames received from the device")
    monitor_parser.add_argument("--subscribe", action="append", default=[], metavar="SUBADDR[:PARAM]",
                                help="Subscribe to mixer updates, e.g. 1.2:ON (repeatable)")
    monitor_parser.add_argument("--duration", type=float, default=0, help="Stop after this many seconds")

    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.WARNING)

    try:
        if args.command == "status":
            asyncio.run(show_status(args.host, args.port, args.poll_interval))
        elif args.command == "send":
            asyncio.run(send_frame(args.host, args.port, args.poll_interval, args.target, args.params))
        elif args.command == "monitor":
            asyncio.run(monitor(args.host, args.port, args.poll_interval, args.subscribe, args.duration))
        else:
            parser.print_help()
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
