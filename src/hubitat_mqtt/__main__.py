"""Command-line entry point: ``hubitat-mqtt`` / ``python -m hubitat_mqtt``."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from hubitat_mqtt.bridge import HubitatMqttBridge
from hubitat_mqtt.config import BridgeConfig
from hubitat_mqtt.exceptions import ConfigError

_logger = logging.getLogger("hubitat_mqtt")


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="hubitat-mqtt",
        description="Bridge Hubitat Maker API devices to an MQTT broker.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument("--http-port", type=int, help="Webhook port (overrides HTTP_PORT)")
    parser.add_argument("--base-topic", help="MQTT base topic (overrides MQTT_BASE_TOPIC)")
    return parser.parse_args(argv)


async def run(config: BridgeConfig) -> None:
    loop = asyncio.get_running_loop()
    async with HubitatMqttBridge(config) as bridge:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, bridge.request_stop)
        try:
            await bridge.wait_stopped()
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    overrides: dict[str, object] = {}
    if args.http_port is not None:
        overrides["http_port"] = args.http_port
    if args.base_topic is not None:
        overrides["base_topic"] = args.base_topic

    try:
        config = BridgeConfig.from_env(**overrides)
    except ConfigError as exc:
        _logger.error("%s", exc)
        sys.exit(2)

    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
