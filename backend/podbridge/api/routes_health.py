from __future__ import annotations

from fastapi import APIRouter, Depends

from podbridge import __version__
from podbridge.config import settings
from podbridge.deps import get_bridge
from podbridge.schemas.health import HealthReport, MetricInfo
from podbridge.services.bridge_service import PodBridge
from podbridge.services.health_service import load_metric_catalog

router = APIRouter()


@router.get("/health")
def health(bridge: PodBridge = Depends(get_bridge)):
    """Liveness of the bridge process itself (not the pod)."""
    return {
        "status": "ok",
        "environment": settings.environment,
        "link_state": bridge.state.value,
        "version": __version__,
    }


@router.get("/pod/health", response_model=HealthReport)
def pod_health(bridge: PodBridge = Depends(get_bridge)):
    """Weighted pod health computed from the live frame right now."""
    return bridge.health()


@router.get("/pod/health/metrics", response_model=list[MetricInfo])
def list_metrics():
    return load_metric_catalog()
