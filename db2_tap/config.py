from __future__ import annotations

from dataclasses import dataclass, field
import json
from pathlib import Path
import configparser
from typing import Any

from db2_tap.connection import ConnectionParams
from db2_tap.errors import ConfigurationError
from db2_tap.schema import validate_categories

AGENT_SECTION_PREFIX = "agent:"
AGENT_DEFAULT_HOST = "localhost:50000"
AGENT_DEFAULT_METRICS = "overview"
DEFAULT_CATEGORY_FILE = "metric.category.json"


@dataclass(frozen=True)
class MqttConfig:
    host: str
    port: int
    base_topic: str
    client_id: str
    username: str | None
    password: str | None
    qos: int
    retain: bool
    tls_enabled: bool
    ca_cert: str | None
    keepalive: int = 60


@dataclass(frozen=True)
class PublishConfig:
    interval_s: int


@dataclass(frozen=True)
class CategoryDefinition:
    name: str
    sql: str
    result: str
    value_metrics: tuple[str, ...] = ()
    counter_metrics: tuple[str, ...] = ()


@dataclass(frozen=True)
class AgentConfig:
    name: str
    host: str
    database: str
    user: str
    password: str
    properties: str | None
    metrics: frozenset[str]

    def connection_params(self) -> ConnectionParams:
        return ConnectionParams(
            host=self.host,
            database=self.database,
            user=self.user,
            password=self.password,
            properties=self.properties,
        )

    def describe(self) -> str:
        return (
            f"name: {self.name} | host: {self.host} | database: {self.database} | "
            f"user: {self.user} | properties: {self.properties} | "
            f"metrics: {sorted(self.metrics)}"
        )

    def __repr__(self) -> str:
        return f"AgentConfig({self.describe()})"


@dataclass(frozen=True)
class AppConfig:
    mqtt: MqttConfig
    publish: PublishConfig
    categories_path: Path
    agents: list[AgentConfig]
    agent_errors: list[str] = field(default_factory=list)


def _get_optional(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value if value else None


def _get_list(value: str | None) -> list[str]:
    if value is None:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def split_metric_list(value: str | None) -> tuple[str, ...]:
    """Split a comma list of metric names into lower-case names without spaces."""
    if not value:
        return ()
    return tuple(
        item for item in value.lower().replace(" ", "").split(",") if item
    )


def _required(section: configparser.SectionProxy, name: str, key: str) -> str:
    value = _get_optional(section.get(key))
    if value is None:
        raise ConfigurationError(
            f"Agent '{name}': the '{key}' attribute is required."
        )
    return value


def parse_agent(name: str, section: configparser.SectionProxy) -> AgentConfig:
    if not name.strip():
        raise ConfigurationError("The agent 'name' attribute is required.")
    metrics = _get_optional(section.get("metrics")) or AGENT_DEFAULT_METRICS
    return AgentConfig(
        name=name.strip(),
        host=_get_optional(section.get("host")) or AGENT_DEFAULT_HOST,
        database=_required(section, name, "database"),
        user=_required(section, name, "user"),
        password=_required(section, name, "passwd"),
        properties=_get_optional(section.get("properties")),
        metrics=frozenset(item.lower() for item in _get_list(metrics)),
    )


def load_config(path: str | Path) -> AppConfig:
    parser = configparser.ConfigParser(interpolation=None)
    read_files = parser.read(path)
    if not read_files:
        raise FileNotFoundError(f"Config file not found: {path}")

    # [mqtt] may be omitted for dry runs
    mqtt_section = parser["mqtt"] if parser.has_section("mqtt") else parser[parser.default_section]

    mqtt = MqttConfig(
        host=mqtt_section.get("host", "localhost"),
        port=mqtt_section.getint("port", 1883),
        base_topic=mqtt_section.get("base_topic", "telemetry/db2"),
        client_id=mqtt_section.get("client_id", "db2-tap"),
        username=_get_optional(mqtt_section.get("username")),
        password=_get_optional(mqtt_section.get("password")),
        qos=mqtt_section.getint("qos", 0),
        retain=mqtt_section.getboolean("retain", False),
        tls_enabled=mqtt_section.getboolean("tls", False),
        ca_cert=_get_optional(mqtt_section.get("ca_cert")),
        keepalive=mqtt_section.getint("keepalive", 60),
    )

    publish = PublishConfig(
        interval_s=parser.getint("publish", "interval_s", fallback=60),
    )

    categories_path = Path(
        parser.get("categories", "path", fallback=DEFAULT_CATEGORY_FILE)
    )
    if not categories_path.is_absolute():
        categories_path = Path(path).parent / categories_path

    # A broken agent section only disables that agent.
    agents: list[AgentConfig] = []
    agent_errors: list[str] = []
    for section in parser.sections():
        if not section.startswith(AGENT_SECTION_PREFIX):
            continue
        try:
            agents.append(parse_agent(section[len(AGENT_SECTION_PREFIX):], parser[section]))
        except ConfigurationError as exc:
            agent_errors.append(str(exc))

    return AppConfig(
        mqtt=mqtt,
        publish=publish,
        categories_path=categories_path,
        agents=agents,
        agent_errors=agent_errors,
    )


def parse_categories(entries: list[dict[str, Any]]) -> list[CategoryDefinition]:
    errors = validate_categories(entries)
    if errors:
        raise ConfigurationError(
            "Invalid metric category configuration: " + "; ".join(errors)
        )
    categories: list[CategoryDefinition] = []
    seen: set[str] = set()
    for entry in entries:
        name = entry["category"].strip().lower()
        if name in seen:
            raise ConfigurationError(f"Duplicate metric category '{name}'")
        seen.add(name)
        categories.append(
            CategoryDefinition(
                name=name,
                sql=entry["SQL"],
                result=entry["result"],
                value_metrics=split_metric_list(entry.get("value_metrics")),
                counter_metrics=split_metric_list(entry.get("counter_metrics")),
            )
        )
    return categories


def load_categories(path: str | Path) -> list[CategoryDefinition]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            entries = json.load(handle)
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Metric category file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Metric category file {path} is not valid JSON: {exc}") from exc
    return parse_categories(entries)
