from fastapi import APIRouter, Depends, Request, Query
from typing import Optional

from tailor_service.config import settings
from tailor_service.ratelimit.admission import RequestAdmissionGate, get_admission_gate
from tailor_service.ratelimit.identity import extract_ip_address, hash_ip_address
from tailor_service.ratelimit.metrics import get_metrics_summary
from tailor_service.streaming.pipeline import ENDPOINT

router = APIRouter()


@router.get("/status")
async def rate_limit_status(
    request: Request,
    endpoint: str = Query(ENDPOINT),
    modelKey: Optional[str] = Query(None),
    gate: RequestAdmissionGate = Depends(get_admission_gate),
):
    """Caller's usage per window, plus shared upstream usage for tracked models"""
    model_key = modelKey or settings.DEFAULT_MODEL_KEY
    ip = extract_ip_address(request.headers, request.client.host if request.client else None)

    status = gate.limiter.get_rate_limit_status(ip, endpoint, model_key)
    response = {
        "endpoint": endpoint,
        "modelKey": model_key,
        "fingerprint": hash_ip_address(ip, gate.ip_hash_salt),
        "limits": status.to_dict(),
    }
    if gate.quota_tracker.is_tracked(model_key):
        response["global"] = gate.quota_tracker.get_usage_status(model_key).to_dict()
    return response


@router.get("/metrics")
async def rate_limit_metrics():
    """Snapshot of admission and pipeline metrics"""
    return get_metrics_summary()
