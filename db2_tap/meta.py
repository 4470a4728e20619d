from __future__ import annotations

from dataclasses import dataclass, field
import logging
import time
from types import MappingProxyType
from typing import Callable, Iterable, Mapping

from db2_tap.config import CategoryDefinition

DEFAULT_UNIT = ""
DEFAULT_COUNTER_UNIT = "Operations/Second"

STATEMENTS_UNIT = "Statements"
ACTIVITIES_UNIT = "Activities"
REQUESTS_UNIT = "Requests"
TIME_UNIT = "Microseconds"
PERCENTAGE_UNIT = "%"
TIMES_UNIT = "Times"

# Well-known keys reported by the stock category file. All are gauges.
BUILTIN_UNITS: Mapping[str, str] = MappingProxyType(
    {
        "overview/total_app_commits": STATEMENTS_UNIT,
        "overview/total_app_rollbacks": STATEMENTS_UNIT,
        "overview/act_completed_total": ACTIVITIES_UNIT,
        "overview/app_rqsts_completed_total": REQUESTS_UNIT,
        "overview/avg_rqst_cpu_time": TIME_UNIT,
        "overview/routine_time_rqst_percent": PERCENTAGE_UNIT,
        "overview/rqst_wait_time_percent": PERCENTAGE_UNIT,
        "overview/act_wait_time_percent": PERCENTAGE_UNIT,
        "overview/io_wait_time_percent": PERCENTAGE_UNIT,
        "overview/lock_wait_time_percent": PERCENTAGE_UNIT,
        "overview/agent_wait_time_percent": PERCENTAGE_UNIT,
        "overview/network_wait_time_percent": PERCENTAGE_UNIT,
        "overview/section_proc_time_percent": PERCENTAGE_UNIT,
        "overview/section_sort_proc_time_percent": PERCENTAGE_UNIT,
        "overview/compile_proc_time_percent": PERCENTAGE_UNIT,
        "overview/transact_end_proc_time_percent": PERCENTAGE_UNIT,
        "overview/utils_proc_time_percent": PERCENTAGE_UNIT,
        "overview/avg_lock_waits_per_act": TIMES_UNIT,
        "overview/avg_lock_timeouts_per_act": TIMES_UNIT,
        "overview/avg_deadlocks_per_act": DEFAULT_UNIT,
        "overview/avg_lock_escals_per_act": TIMES_UNIT,
        "overview/rows_read_per_rows_returned": DEFAULT_UNIT,
        "overview/total_bp_hit_ratio_percent": PERCENTAGE_UNIT,
        "connection_overview/connections": DEFAULT_UNIT,
        "sql_overview/sql_statements": DEFAULT_UNIT,
    }
)


class EpochCounter:
    """Turn samples of a monotonically increasing counter into a per-second rate.

    The first sample only primes the counter. Afterwards every sample yields
    ``(value - previous) / elapsed_seconds``. A decreasing value means the
    counter was reset on the server (e.g. database reactivation); that sample
    primes the counter again instead of reporting a negative rate.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self.clock = clock
        self.last_value: float | None = None
        self.last_time: float | None = None

    def process(self, value: float) -> float | None:
        now = self.clock()
        rate = None
        if self.last_value is not None and self.last_time is not None:
            elapsed = now - self.last_time
            delta = value - self.last_value
            if elapsed > 0 and delta >= 0:
                rate = delta / elapsed
        self.last_value = value
        self.last_time = now
        return rate


@dataclass
class MetricMeta:
    unit: str
    counter: EpochCounter | None = field(default=None, repr=False)

    @classmethod
    def gauge(cls, unit: str = DEFAULT_UNIT) -> MetricMeta:
        return cls(unit=unit)

    @classmethod
    def rate(
        cls, unit: str = DEFAULT_COUNTER_UNIT, clock: Callable[[], float] = time.time
    ) -> MetricMeta:
        return cls(unit=unit, counter=EpochCounter(clock))

    @property
    def is_counter(self) -> bool:
        return self.counter is not None

    def __str__(self) -> str:
        return f"{'[counter]' if self.is_counter else ''}({self.unit})"


class MetricMetaRegistry:
    """Unit and counter/gauge classification for every known metric key.

    Classification is fixed once the registry is built; transforming a
    counter sample mutates only that key's ``EpochCounter``.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self.clock = clock
        self.logger = logging.getLogger(self.__class__.__name__)
        self._metas: dict[str, MetricMeta] = {}

    @classmethod
    def from_categories(
        cls,
        categories: Iterable[CategoryDefinition],
        clock: Callable[[], float] = time.time,
    ) -> MetricMetaRegistry:
        registry = cls(clock)
        for category in categories:
            for name in category.value_metrics:
                registry.add(f"{category.name}/{name}", MetricMeta.gauge())
            for name in category.counter_metrics:
                registry.add(f"{category.name}/{name}", MetricMeta.rate(clock=clock))
        for key, unit in BUILTIN_UNITS.items():
            registry.add(key, MetricMeta.gauge(unit))
        registry.logger.debug("Registered metadata for %s metrics", len(registry))
        return registry

    def add(self, key: str, meta: MetricMeta) -> None:
        self._metas[key.lower()] = meta

    def classify(self, key: str) -> MetricMeta | None:
        return self._metas.get(key.lower())

    @staticmethod
    def transform(meta: MetricMeta, value: float) -> float | None:
        if meta.counter is not None:
            return meta.counter.process(value)
        return value

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.lower() in self._metas

    def __len__(self) -> int:
        return len(self._metas)
