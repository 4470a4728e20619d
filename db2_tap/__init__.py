"""db2-tap DB2 metrics exporter."""

from db2_tap.agent import Db2Agent, ReportableMetric, build_payload
from db2_tap.config import AgentConfig, AppConfig, CategoryDefinition, load_categories, load_config
from db2_tap.connection import ConnectionManager, ConnectionParams
from db2_tap.meta import EpochCounter, MetricMeta, MetricMetaRegistry
from db2_tap.mqtt_client import MqttPublisher
from db2_tap.schema import validate_payload

__all__ = [
    "AgentConfig",
    "AppConfig",
    "CategoryDefinition",
    "ConnectionManager",
    "ConnectionParams",
    "Db2Agent",
    "EpochCounter",
    "MetricMeta",
    "MetricMetaRegistry",
    "MqttPublisher",
    "ReportableMetric",
    "build_payload",
    "load_categories",
    "load_config",
    "validate_payload",
]
