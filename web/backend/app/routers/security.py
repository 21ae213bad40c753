"""Security, Audit, Alerts & Webhooks API router.

Prefix: ``/api/security``
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from modguard.engine import ModerationEngine
from modguard.errors import ConflictError, ValidationError
from modguard.notify.webhooks import WebhookManager
from modguard.security.audit_log import TARGET_FIELDS
from web.backend.app.middleware.actor import Actor, get_actor, get_engine
from web.backend.app.models.api import (
    AlertResponse,
    AuditEntryResponse,
    AuditExportResponse,
    CreateWebhookRequest,
    DismissAlertRequest,
    EscalateAlertRequest,
    ResolveAlertRequest,
    ToggleRequest,
    WebhookDeliveryResponse,
    WebhookResponse,
    plain,
)

router = APIRouter(prefix="/api/security", tags=["security"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _webhooks(engine: ModerationEngine) -> WebhookManager:
    if not isinstance(engine.notifier, WebhookManager):
        raise ConflictError("webhook delivery is disabled")
    return engine.notifier


# =========================================================================
# Audit Log endpoints
# =========================================================================


@router.get("/audit", response_model=list[AuditEntryResponse])
async def list_audit_events(
    actor: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    severity: Optional[str] = Query(None),
    success: Optional[bool] = Query(None),
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    limit: int = Query(200, ge=1, le=10000),
    engine: ModerationEngine = Depends(get_engine),
):
    """List audit events with optional filters, newest first."""
    events = engine.audit.get_events(
        actor=actor,
        action=action,
        category=category,
        severity=severity,
        success=success,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
    )
    return [AuditEntryResponse(**plain(e)) for e in events]


@router.get("/audit/export", response_model=AuditExportResponse)
async def export_audit_log(
    format: str = Query("json", pattern="^(json|csv)$"),
    actor: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    engine: ModerationEngine = Depends(get_engine),
):
    """Export the audit log in JSON or CSV format."""
    filters = {"actor": actor, "action": action, "start_date": start_date, "end_date": end_date}
    content = engine.audit.export_events(format, **filters)
    events = engine.audit.get_events(limit=10000, **filters)
    return AuditExportResponse(format=format, content=content, record_count=len(events))


@router.get("/audit/{target_field}/{value}", response_model=list[AuditEntryResponse])
async def get_events_for_target(
    target_field: str,
    value: str,
    engine: ModerationEngine = Depends(get_engine),
):
    """Audit events touching one entity, e.g. ``/audit/content_flag_id/<id>``."""
    if target_field not in TARGET_FIELDS:
        raise ValidationError(f"unknown audit target field: {target_field}")
    return [AuditEntryResponse(**plain(e)) for e in engine.audit.get_events_for_target(target_field, value)]


# =========================================================================
# Security alert endpoints
# =========================================================================


@router.get("/alerts", response_model=list[AlertResponse])
async def list_alerts(
    status: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    severity: Optional[str] = Query(None),
    min_severity: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    engine: ModerationEngine = Depends(get_engine),
):
    alerts = engine.alerts.list_alerts(
        status=status,
        category=category,
        severity=severity,
        min_severity=min_severity,
        user_id=user_id,
        limit=limit,
    )
    return [AlertResponse(**plain(a)) for a in alerts]


@router.get("/alerts/{alert_id}", response_model=AlertResponse)
async def get_alert(alert_id: str, engine: ModerationEngine = Depends(get_engine)):
    return AlertResponse(**plain(engine.alerts.get_alert(alert_id)))


@router.post("/alerts/{alert_id}/acknowledge", response_model=AlertResponse)
async def acknowledge_alert(
    alert_id: str,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    """Acknowledge an alert; it moves to ``investigating``."""
    return AlertResponse(**plain(engine.alerts.acknowledge(alert_id, actor.id)))


@router.post("/alerts/{alert_id}/escalate", response_model=AlertResponse)
async def escalate_alert(
    alert_id: str,
    req: EscalateAlertRequest,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    return AlertResponse(**plain(engine.alerts.escalate(alert_id, actor.id, req.escalated_to)))


@router.post("/alerts/{alert_id}/resolve", response_model=AlertResponse)
async def resolve_alert(
    alert_id: str,
    req: ResolveAlertRequest,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    alert = engine.alerts.resolve(alert_id, actor.id, req.resolution, req.actions_taken)
    return AlertResponse(**plain(alert))


@router.post("/alerts/{alert_id}/dismiss", response_model=AlertResponse)
async def dismiss_alert(
    alert_id: str,
    req: DismissAlertRequest,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    return AlertResponse(**plain(engine.alerts.dismiss(alert_id, actor.id, req.reason)))


# =========================================================================
# Webhook endpoints
# =========================================================================


@router.post("/webhooks", response_model=WebhookResponse, status_code=201)
async def create_webhook(
    req: CreateWebhookRequest,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    """Register a new webhook for one or more notification categories."""
    wh = _webhooks(engine).register_webhook(
        url=req.url,
        categories=req.categories,
        secret=req.secret,
        name=req.name,
    )
    engine.audit.log_event(
        "create_webhook",
        "system_configuration",
        actor.id,
        details={"webhook_id": wh.id, "url": wh.url, "categories": wh.categories},
    )
    return WebhookResponse(**plain(wh))


@router.get("/webhooks", response_model=list[WebhookResponse])
async def list_webhooks_endpoint(engine: ModerationEngine = Depends(get_engine)):
    """List all registered webhooks."""
    return [WebhookResponse(**plain(w)) for w in _webhooks(engine).list_webhooks()]


@router.put("/webhooks/{webhook_id}/toggle", response_model=WebhookResponse)
async def toggle_webhook(
    webhook_id: str,
    req: ToggleRequest,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    """Enable or disable a webhook."""
    wh = _webhooks(engine).toggle_webhook(webhook_id, req.enabled)
    engine.audit.log_event(
        "toggle_webhook",
        "system_configuration",
        actor.id,
        details={"webhook_id": webhook_id, "active": req.enabled},
    )
    return WebhookResponse(**plain(wh))


@router.delete("/webhooks/{webhook_id}")
async def delete_webhook(
    webhook_id: str,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    """Delete a webhook."""
    if not _webhooks(engine).delete_webhook(webhook_id):
        raise HTTPException(status_code=404, detail="Webhook not found")
    engine.audit.log_event(
        "delete_webhook",
        "system_configuration",
        actor.id,
        details={"webhook_id": webhook_id},
    )
    return {"detail": "Webhook deleted"}


@router.get("/webhooks/deliveries", response_model=list[WebhookDeliveryResponse])
async def list_deliveries(
    webhook_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    engine: ModerationEngine = Depends(get_engine),
):
    """Delivery history, newest first. Failed deliveries are never retried."""
    deliveries = _webhooks(engine).get_deliveries(webhook_id, limit)
    return [WebhookDeliveryResponse(**plain(d)) for d in deliveries]
