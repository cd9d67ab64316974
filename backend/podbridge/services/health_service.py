from __future__ import annotations

import datetime as dt
import pathlib
from typing import List, Optional

import yaml

from podbridge.policies.health_rules import evaluate_health
from podbridge.schemas.health import HealthReport, MetricInfo
from podbridge.schemas.relay import RelayState
from podbridge.schemas.telemetry import TelemetryFrame

CATALOG_PATH = pathlib.Path(__file__).resolve().parent.parent / "policies" / "health_catalog.yaml"


class HealthScorer:
    """Stateless scorer; reports are recomputed on demand, never cached."""

    def evaluate(
        self,
        connected: bool,
        frame: TelemetryFrame,
        relays: Optional[RelayState] = None,
        now: Optional[dt.datetime] = None,
    ) -> HealthReport:
        return evaluate_health(connected, frame, relays, now)


def load_metric_catalog(path: pathlib.Path = CATALOG_PATH) -> List[MetricInfo]:
    with open(path, "r", encoding="utf-8") as f:
        doc = yaml.safe_load(f) or {}
    return [
        MetricInfo(
            metric_id=m["metric_id"],
            name=m["name"],
            weight=int(m["weight"]),
            description=m.get("description", ""),
        )
        for m in doc.get("metrics", [])
    ]
