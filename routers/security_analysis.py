"""
Platform security and license administration API.
Event ingestion for the attack pattern detectors, detector introspection and
license cache administration. Mounted under the platform prefix, so license
validation never applies to it.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from models.security import Violation
from monitoring.logger import EventType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/platform/security", tags=["Platform Security"])


def get_container(request: Request):
    return request.app.state.container


# Pydantic models for API requests
class AuthAttemptRequest(BaseModel):
    """Authentication attempt event."""
    ip_address: Optional[str] = Field(default=None, alias="ipAddress")
    username: Optional[str] = None
    password: Optional[str] = None
    success: bool = False
    user_agent: Optional[str] = Field(default=None, alias="userAgent")
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    tenant_id: Optional[str] = Field(default=None, alias="tenantId")
    timestamp: Optional[float] = None

    model_config = {"populate_by_name": True}


class SessionEventRequest(BaseModel):
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    ip_address: Optional[str] = Field(default=None, alias="ipAddress")
    user_id: Optional[str] = Field(default=None, alias="userId")
    user_agent: Optional[str] = Field(default=None, alias="userAgent")
    tenant_id: Optional[str] = Field(default=None, alias="tenantId")
    activities: List[str] = Field(default_factory=list)
    timestamp: Optional[float] = None

    model_config = {"populate_by_name": True}


class CoordinatedBatchRequest(BaseModel):
    attack_type: str = Field(default="unknown", alias="attackType")
    source_ips: List[str] = Field(default_factory=list, alias="sourceIPs")
    target_tenants: List[str] = Field(default_factory=list, alias="targetTenants")
    attack_signature: Dict[str, Any] = Field(default_factory=dict, alias="attackSignature")
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[float] = None

    model_config = {"populate_by_name": True}


class AnalysisToggleRequest(BaseModel):
    enabled: bool


class CacheClearRequest(BaseModel):
    tenant_id: Optional[str] = Field(default=None, alias="tenantId")

    model_config = {"populate_by_name": True}


async def _dispatch(container, violations: List[Violation]) -> Dict[str, Any]:
    failed = await container.dispatcher.dispatch(violations) if violations else 0
    return {
        "success": True,
        "violations": [v.to_dict() for v in violations],
        "failedDeliveries": failed,
    }


# ============================================================================
# EVENT INGESTION
# ============================================================================

@router.post("/events/auth-attempt")
async def ingest_auth_attempt(body: AuthAttemptRequest, container=Depends(get_container)):
    """Feed one authentication attempt to the brute force and credential stuffing detectors."""
    violations = container.engine.analyze_authentication_attempt(body.model_dump(by_alias=True))
    return await _dispatch(container, violations)


@router.post("/events/session")
async def ingest_session_event(body: SessionEventRequest, container=Depends(get_container)):
    violations = container.engine.track_cross_session_patterns(body.model_dump(by_alias=True))
    return await _dispatch(container, violations)


@router.post("/events/coordinated")
async def ingest_coordinated_batch(body: CoordinatedBatchRequest, container=Depends(get_container)):
    violations = container.engine.detect_coordinated_attacks(body.model_dump(by_alias=True))
    return await _dispatch(container, violations)


# ============================================================================
# ANALYSIS INTROSPECTION
# ============================================================================

@router.get("/analysis/stats")
async def get_analysis_stats(container=Depends(get_container)):
    return {"success": True, "data": container.engine.get_analysis_stats()}


@router.get("/analysis/export")
async def export_analysis_data(container=Depends(get_container)):
    container.audit_logger.log_admin_action("export_attack_pattern_data")
    return {"success": True, "data": container.engine.export_attack_pattern_data()}


@router.post("/analysis/toggle")
async def toggle_analysis(body: AnalysisToggleRequest, container=Depends(get_container)):
    enabled = container.engine.set_analysis_enabled(body.enabled)
    container.audit_logger.log_admin_action("set_analysis_enabled", enabled=enabled)
    return {"success": True, "analysisEnabled": enabled}


@router.post("/analysis/reset")
async def reset_analysis(container=Depends(get_container)):
    container.engine.reset()
    container.violation_store.clear()
    container.audit_logger.log_admin_action("reset_attack_pattern_state")
    return {"success": True}


@router.get("/violations")
async def get_recent_violations(limit: int = Query(default=100, ge=1, le=1000),
                                container=Depends(get_container)):
    """Most recent violations, oldest first."""
    violations = container.violation_store.recent(limit)
    return {"success": True, "data": [v.to_dict() for v in violations]}


@router.get("/audit/events")
async def get_audit_events(limit: int = Query(default=100, ge=1, le=1000),
                           event_type: Optional[EventType] = Query(default=None, alias="eventType"),
                           container=Depends(get_container)):
    events = container.audit_logger.get_recent_events(limit=limit, event_type=event_type)
    return {"success": True, "data": events}


# ============================================================================
# LICENSE ADMINISTRATION
# ============================================================================

@router.get("/license/stats")
async def get_license_stats(container=Depends(get_container)):
    """Gateway, module cache and rate limiter statistics."""
    data = container.gateway.get_stats()
    data["moduleCache"] = container.validator.get_cache_stats()
    data["rateLimiting"] = container.module_rate_limiter.get_stats()
    data["maintenance"] = container.scheduler.get_status()
    data["metrics"] = container.metrics.get_summary()
    return {"success": True, "data": data}


@router.post("/license/cache/clear")
async def clear_license_cache(body: Optional[CacheClearRequest] = None, container=Depends(get_container)):
    tenant_id = body.tenant_id if body else None
    cleared = await container.gateway.clear_cache(tenant_id)
    if tenant_id:
        cleared_modules = container.validator.invalidate_cache(tenant_id)
    else:
        cleared_modules = container.validator.clear_cache()
    container.audit_logger.log_admin_action("clear_license_cache", tenantId=tenant_id)
    return {"success": True, "clearedValidations": cleared, "clearedModuleValidations": cleared_modules}


@router.post("/license/rate-limit/clear")
async def clear_rate_limit_cache(container=Depends(get_container)):
    cleared = container.module_rate_limiter.clear()
    container.audit_logger.log_admin_action("clear_rate_limit_cache")
    return {"success": True, "clearedEntries": cleared}


@router.post("/license/background-validation")
async def trigger_background_validation(container=Depends(get_container)):
    status = await container.gateway.run_background_validation()
    return {"success": True, "data": status}
