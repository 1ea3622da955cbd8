"""Post-commit observers for ingested readings."""

from __future__ import annotations

import logging

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Gauge, generate_latest

from .coordinator import IngestResult
from .models import Reading

logger = logging.getLogger(__name__)

GAUGE_NAMES: dict[str, str] = {
    "temperature": "Last reported machine temperature",
    "kv": "Last reported tube voltage (kV)",
    "ma": "Last reported tube current (mA)",
    "exposure_time_ms": "Last reported exposure time in milliseconds",
    "image_count": "Last reported image count of the current series",
}


class PrometheusObserver:
    """Publish the latest committed machine values as Prometheus gauges."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.gauges = {
            name: Gauge(
                f"imaging_machine_{name}",
                description,
                ["serial_number", "machine_type"],
                registry=self.registry,
            )
            for name, description in GAUGE_NAMES.items()
        }

    def __call__(self, reading: Reading, result: IngestResult) -> None:
        for name, value in reading.gauge_values().items():
            gauge = self.gauges.get(name)
            if gauge is None:
                continue
            gauge.labels(
                serial_number=reading.serial_number,
                machine_type=reading.machine_type.value,
            ).set(value)
        logger.debug("Updated gauges for %s (record %s)", reading.serial_number, result.machine_record_id)

    def render(self) -> tuple[bytes, str]:
        return generate_latest(self.registry), CONTENT_TYPE_LATEST
