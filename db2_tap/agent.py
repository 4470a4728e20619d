from __future__ import annotations

from dataclasses import asdict, dataclass
import logging
from typing import Any, Iterable

from db2_tap.config import AgentConfig, CategoryDefinition
from db2_tap.connection import ConnectionManager
from db2_tap.logging_utils import TRACE_LEVEL
from db2_tap.meta import DEFAULT_UNIT, MetricMetaRegistry
from db2_tap.query import run_sql

VERSION = "1.0.0"
SCHEMA_NAME = "db2-metrics"
SCHEMA_VERSION = 1

OVERVIEW_CATEGORY = "overview"


@dataclass(frozen=True)
class ReportableMetric:
    name: str
    unit: str
    value: float


def build_payload(
    agent_name: str, metrics: Iterable[ReportableMetric], ts: str
) -> dict[str, Any]:
    return {
        "schema": {"name": SCHEMA_NAME, "version": SCHEMA_VERSION},
        "ts": ts,
        "agent": agent_name,
        "metrics": [asdict(metric) for metric in metrics],
    }


class Db2Agent:
    """Collects and reports the enabled metric categories of one DB2 database.

    One instance owns one connection and one metric registry. It is not
    thread safe; a scheduler may drive many agents but must run each agent's
    poll cycles one at a time.
    """

    def __init__(
        self,
        config: AgentConfig,
        categories: Iterable[CategoryDefinition],
        connection_manager: ConnectionManager | None = None,
        registry: MetricMetaRegistry | None = None,
    ) -> None:
        self.config = config
        self.categories = list(categories)
        self.connections = connection_manager if connection_manager is not None else ConnectionManager()
        if registry is None:
            registry = MetricMetaRegistry.from_categories(self.categories)
        self.registry = registry
        self.first_report = True
        self.logger = logging.getLogger(f"{self.__class__.__name__}.{config.name}")
        self.logger.debug("DB2 agent initialized: %s", config.describe())
        known = {category.name for category in self.categories}
        for name in sorted(config.metrics - known):
            self.logger.warning("Agent %s enables unknown metric category %r", self.name, name)

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def agent_info(self) -> str:
        return f"Agent Name: {self.name}. Agent Version: {VERSION}"

    def is_reporting_for_category(self, category: str) -> bool:
        return category in self.config.metrics

    def run_poll_cycle(self) -> list[ReportableMetric]:
        conn = self.connections.get_connection(self.config.connection_params())
        if conn is None:
            return []

        self.logger.debug("Gathering DB2 metrics. %s", self.agent_info)
        results = self.gather_metrics(conn)
        metrics = self.report_metrics(results)
        self.first_report = False
        return metrics

    def gather_metrics(self, conn: Any) -> dict[str, float]:
        results: dict[str, float] = {}
        for category in self.categories:
            if self.is_reporting_for_category(category.name):
                results.update(run_sql(conn, category.name, category.sql, category.result))
        results.update(self.derived_metrics(results))
        return results

    def derived_metrics(self, existing: dict[str, float]) -> dict[str, float]:
        """Metrics computed from already gathered values.

        Requires the ``overview`` category. Nothing is derived yet.
        """
        derived: dict[str, float] = {}
        if not self.is_reporting_for_category(OVERVIEW_CATEGORY):
            return derived
        return derived

    def required_metrics_present(
        self, category: str, results: dict[str, float], *keys: str
    ) -> bool:
        for key in keys:
            if key not in results:
                if self.first_report:
                    self.logger.debug(
                        "Not reporting on '%s' due to missing data field '%s'",
                        category,
                        key,
                    )
                return False
        return True

    def report_metrics(self, results: dict[str, float]) -> list[ReportableMetric]:
        self.logger.debug("Collected %s DB2 metrics. %s", len(results), self.agent_info)
        metrics: list[ReportableMetric] = []
        registered = 0
        for key in sorted(results):
            value = results[key]
            meta = self.registry.classify(key)
            if meta is None:
                if self.first_report:
                    self.logger.debug(
                        "Meta for metric %s doesn't exist, using default unit, value %s",
                        key,
                        value,
                    )
                metrics.append(ReportableMetric(key, DEFAULT_UNIT, value))
                continue
            registered += 1
            self.logger.log(TRACE_LEVEL, "Metric %s %s=%s", key, meta, value)
            reported = self.registry.transform(meta, value)
            if reported is not None:
                metrics.append(ReportableMetric(key, meta.unit, reported))
        self.logger.debug(
            "Reporting %s metrics (%s registered). %s",
            len(metrics),
            registered,
            self.agent_info,
        )
        return metrics

    def close(self) -> None:
        self.connections.close()
