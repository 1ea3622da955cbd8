"""Prometheus exposition of the latest machine readings."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response

from api.dependencies import get_metrics
from ingestion.observers import PrometheusObserver


router = APIRouter(tags=["metrics"])


@router.get("/metrics")
def metrics(observer: Optional[PrometheusObserver] = Depends(get_metrics)):
    """Prometheus metrics endpoint."""
    if observer is None:
        raise HTTPException(status_code=404, detail="Metrics are disabled")
    content, content_type = observer.render()
    return Response(content=content, media_type=content_type)
