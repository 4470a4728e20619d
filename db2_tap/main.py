from __future__ import annotations

import argparse
from datetime import datetime, timezone
import json
import logging
import sys
import time

from db2_tap.agent import Db2Agent, build_payload
from db2_tap.config import AppConfig, CategoryDefinition, load_categories, load_config
from db2_tap.errors import ConfigurationError
from db2_tap.logging_utils import configure_logging, resolve_log_level
from db2_tap.mqtt_client import MqttPublisher
from db2_tap.schema import validate_payload

logger = logging.getLogger("db2_tap")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="db2-tap DB2 metrics exporter")
    parser.add_argument(
        "--config",
        default="config/example.cfg",
        help="Path to CFG configuration file",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (TRACE, DEBUG, INFO, WARNING, ERROR)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Enable debug logging (-v) or trace logging (-vv)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log payloads without publishing to MQTT",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single poll cycle for every agent, then exit",
    )
    parser.add_argument(
        "--dump-json",
        help="Write the JSON payloads to a file (overwrites on each loop)",
    )
    parser.add_argument(
        "--publish-status",
        metavar="STATUS",
        help="Publish a status (e.g., 'maintenance', 'online') to the availability topic and exit.",
    )
    return parser


def build_agents(
    config: AppConfig, categories: list[CategoryDefinition]
) -> list[Db2Agent]:
    for error in config.agent_errors:
        logger.error("Skipping agent: %s", error)
    agents = []
    for agent_config in config.agents:
        try:
            agents.append(Db2Agent(agent_config, categories))
        except ConfigurationError as exc:
            logger.error("Skipping agent %s: %s", agent_config.name, exc)
    return agents


def poll(
    agents: list[Db2Agent], pretty_print: bool = False
) -> dict[str, str]:
    """Run one poll cycle for every agent and return its JSON payload by agent name."""
    payloads: dict[str, str] = {}
    for agent in agents:
        metrics = agent.run_poll_cycle()
        if not metrics:
            logger.debug("Agent %s produced no metrics this cycle.", agent.name)
            continue
        ts = datetime.now(timezone.utc).isoformat()
        payload = build_payload(agent.name, metrics, ts)
        schema_errors = validate_payload(payload)
        if schema_errors:
            logger.warning(
                "Schema validation failed for %s with %s errors.",
                agent.name,
                len(schema_errors),
            )
            logger.debug("Schema errors: %s", schema_errors)
        payloads[agent.name] = (
            json.dumps(payload, indent=2) if pretty_print else json.dumps(payload)
        )
    return payloads


def _dump(path: str, payloads: dict[str, str]) -> None:
    with open(path, "w", encoding="utf-8") as handle:
        handle.write("[" + ",".join(payloads.values()) + "]")


def _publish_status(config: AppConfig, status: str) -> int:
    publisher = MqttPublisher(config.mqtt)
    publisher.connect()
    time.sleep(0.5)
    ok = False
    if publisher.connected:
        ok = publisher.publish_status(status)
        time.sleep(0.5)
    else:
        logger.error("Failed to connect to MQTT broker")
    publisher.disconnect()
    return 0 if ok else 1


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = resolve_log_level(args.verbose, args.log_level)
    config = load_config(args.config)
    configure_logging(level, secrets=[agent.password for agent in config.agents])
    pretty_print = level <= logging.DEBUG

    if args.publish_status:
        return _publish_status(config, args.publish_status)

    try:
        categories = load_categories(config.categories_path)
    except ConfigurationError as exc:
        logger.error("%s", exc)
        return 1

    agents = build_agents(config, categories)
    if not agents:
        logger.error("No usable agent configured in %s", args.config)
        return 1

    publisher = None if args.dry_run else MqttPublisher(config.mqtt)
    if publisher is not None:
        publisher.connect()

    interval = max(1, config.publish.interval_s)
    logger.info(
        "db2-tap started with %s agent(s). Polling every %s seconds.",
        len(agents),
        interval,
    )

    try:
        while True:
            payloads = poll(agents, pretty_print)
            if args.dump_json:
                _dump(args.dump_json, payloads)
            for name, payload_json in payloads.items():
                if args.dry_run:
                    logger.info("Dry run enabled; payload for %s: %s", name, payload_json)
                elif publisher is not None:
                    publisher.publish(name, payload_json)
            if args.once:
                logger.info("Single-run mode enabled; exiting after one poll cycle.")
                break
            time.sleep(interval)
    except KeyboardInterrupt:
        logger.info("db2-tap stopped.")
    finally:
        for agent in agents:
            agent.close()
        if publisher is not None:
            publisher.disconnect()
    return 0


if __name__ == "__main__":
    sys.exit(main())
