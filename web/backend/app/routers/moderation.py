"""Moderation API router: content, flags, scans, activity, behavior, rules and threat intelligence.

Prefix: ``/api/moderation``
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query

from modguard.engine import ModerationEngine
from modguard.errors import NotFoundError
from web.backend.app.middleware.actor import Actor, get_actor, get_engine
from web.backend.app.models.api import (
    ActivityFlagResponse,
    ActivityStatusRequest,
    BehaviorAnalysisResponse,
    BehaviorRequest,
    ContentFlagResponse,
    EscalateFlagRequest,
    FlagActivityRequest,
    FlagPageResponse,
    InvestigationNoteRequest,
    ReportMessageRequest,
    ReviewFlagRequest,
    ReviewFlagResponse,
    RuleRequest,
    RuleResponse,
    ScanRequest,
    ScanSummaryResponse,
    SubmitContentRequest,
    ThreatActiveRequest,
    ThreatRequest,
    ThreatResponse,
    ToggleRequest,
    plain,
)

router = APIRouter(prefix="/api/moderation", tags=["moderation"])


# =========================================================================
# Application-owned records
# =========================================================================


@router.post("/conversations", status_code=201)
async def record_conversation(
    data: dict[str, Any] = Body(...),
    engine: ModerationEngine = Depends(get_engine),
):
    """Register a conversation so its messages can be moderated."""
    return plain(engine.record_conversation(data))


@router.post("/users", status_code=201)
async def record_user(
    data: dict[str, Any] = Body(...),
    engine: ModerationEngine = Depends(get_engine),
):
    return plain(engine.record_user(data))


@router.post("/messages", status_code=201)
async def record_message(
    data: dict[str, Any] = Body(...),
    engine: ModerationEngine = Depends(get_engine),
):
    """Register a message so it can be scored."""
    return plain(engine.record_message(data))


@router.post("/messages/{message_id}/report", response_model=ContentFlagResponse, status_code=201)
async def report_message(
    message_id: str,
    req: ReportMessageRequest,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    """A user reports a message; the report always goes to human review."""
    flag = engine.flags.report_message(
        message_id, actor.id, req.reason, req.category, req.additional_info
    )
    return ContentFlagResponse(**plain(flag))


# =========================================================================
# Content flags
# =========================================================================


@router.post("/content", response_model=ContentFlagResponse, status_code=201)
async def submit_content(
    req: SubmitContentRequest,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    """Score one message and record a content flag.

    When the analyzer is unavailable the flag comes back with
    ``analysis_status=pending`` and no risk score.
    """
    flag = engine.submit_content(req.message_id, req.analysis_type, actor=actor.id)
    return ContentFlagResponse(**plain(flag))


@router.get("/flags", response_model=FlagPageResponse)
async def list_flags(
    status: Optional[str] = Query(None),
    severity: Optional[str] = Query(None),
    flagged_by: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    conversation_id: Optional[str] = Query(None),
    min_risk: Optional[float] = Query(None, ge=0.0, le=1.0),
    max_risk: Optional[float] = Query(None, ge=0.0, le=1.0),
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    engine: ModerationEngine = Depends(get_engine),
):
    """List content flags with filters, pagination and a summary."""
    result = engine.flags.list_flags(
        status=status,
        severity=severity,
        flagged_by=flagged_by,
        user_id=user_id,
        conversation_id=conversation_id,
        min_risk=min_risk,
        max_risk=max_risk,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return FlagPageResponse(
        items=[ContentFlagResponse(**plain(f)) for f in result.items],
        page=result.page,
        limit=result.limit,
        total=result.total,
        pages=result.pages,
        summary=plain(result.summary),
    )


@router.get("/flags/{flag_id}", response_model=ContentFlagResponse)
async def get_flag(flag_id: str, engine: ModerationEngine = Depends(get_engine)):
    return ContentFlagResponse(**plain(engine.flags.get_flag(flag_id)))


@router.post("/flags/{flag_id}/review", response_model=ReviewFlagResponse)
async def review_flag(
    flag_id: str,
    req: ReviewFlagRequest,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    """Record a reviewer's decision and run the chosen moderation action."""
    outcome = engine.review_flag(
        flag_id,
        actor.id,
        req.decision,
        req.moderation_action,
        notes=req.notes,
        escalate=req.escalate,
        escalate_to=req.escalate_to,
        expected_version=req.expected_version,
        reviewer_role=actor.role,
    )
    return ReviewFlagResponse(
        flag=ContentFlagResponse(**plain(outcome.flag)),
        action=plain(outcome.action) if outcome.action else None,
    )


@router.post("/flags/{flag_id}/escalate", response_model=ContentFlagResponse)
async def escalate_flag(
    flag_id: str,
    req: EscalateFlagRequest,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    flag = engine.flags.escalate_flag(flag_id, req.escalated_to, actor.id, req.reason)
    return ContentFlagResponse(**plain(flag))


@router.post("/flags/{flag_id}/retry", response_model=ContentFlagResponse)
async def retry_analysis(
    flag_id: str,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    """Re-run analysis for a flag left pending by an analyzer outage."""
    return ContentFlagResponse(**plain(engine.flags.retry_analysis(flag_id, actor.id)))


# =========================================================================
# Conversation scans
# =========================================================================


@router.post("/scans", response_model=ScanSummaryResponse)
async def scan_conversation(
    req: ScanRequest,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    """Re-analyze a conversation; pass ``scan_id`` to resume an interrupted scan."""
    summary = engine.scan_conversation(
        req.conversation_id,
        req.lookback_days,
        actor=actor.id,
        scan_id=req.scan_id,
        analysis_types=req.analysis_types,
    )
    return ScanSummaryResponse(**plain(summary))


@router.get("/scans/{scan_id}")
async def get_scan(scan_id: str, engine: ModerationEngine = Depends(get_engine)):
    return plain(engine.scanner.get_scan(scan_id))


# =========================================================================
# Suspicious activity
# =========================================================================


@router.post("/activity", response_model=ActivityFlagResponse, status_code=201)
async def flag_activity(
    req: FlagActivityRequest,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    flag = engine.activity.flag_activity(
        req.user_id,
        req.activity_type,
        req.description,
        actor.id,
        evidence=req.evidence,
        conversation_id=req.conversation_id,
        severity=req.severity,
        detection_method=req.detection_method,
    )
    return ActivityFlagResponse(**plain(flag))


@router.get("/activity", response_model=list[ActivityFlagResponse])
async def list_activity_flags(
    user_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    priority: Optional[str] = Query(None),
    engine: ModerationEngine = Depends(get_engine),
):
    flags = engine.activity.list_activity_flags(user_id=user_id, status=status, priority=priority)
    return [ActivityFlagResponse(**plain(f)) for f in flags]


@router.get("/activity/{flag_id}", response_model=ActivityFlagResponse)
async def get_activity_flag(flag_id: str, engine: ModerationEngine = Depends(get_engine)):
    return ActivityFlagResponse(**plain(engine.activity.get_activity_flag(flag_id)))


@router.patch("/activity/{flag_id}/status", response_model=ActivityFlagResponse)
async def update_activity_status(
    flag_id: str,
    req: ActivityStatusRequest,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    flag = engine.activity.update_activity_status(flag_id, req.status, actor.id, req.note)
    return ActivityFlagResponse(**plain(flag))


@router.post("/activity/{flag_id}/notes", response_model=ActivityFlagResponse)
async def add_investigation_note(
    flag_id: str,
    req: InvestigationNoteRequest,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    flag = engine.activity.add_investigation_note(flag_id, actor.id, req.note)
    return ActivityFlagResponse(**plain(flag))


# =========================================================================
# User behavior
# =========================================================================


@router.post("/behavior/{user_id}", response_model=BehaviorAnalysisResponse)
async def analyze_user_behavior(
    user_id: str,
    req: BehaviorRequest,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    analysis = engine.activity.analyze_user_behavior(
        user_id, req.depth_days, actor=actor.id, analysis_type=req.analysis_type
    )
    return BehaviorAnalysisResponse(**plain(analysis))


@router.get("/behavior/{user_id}", response_model=BehaviorAnalysisResponse)
async def latest_behavior(user_id: str, engine: ModerationEngine = Depends(get_engine)):
    analysis = engine.activity.latest_behavior(user_id)
    if analysis is None:
        raise NotFoundError("UserBehaviorAnalysis", user_id)
    return BehaviorAnalysisResponse(**plain(analysis))


# =========================================================================
# Moderation rules
# =========================================================================


@router.get("/rules", response_model=list[RuleResponse])
async def list_rules(
    rule_type: Optional[str] = Query(None),
    enabled_only: bool = Query(False),
    engine: ModerationEngine = Depends(get_engine),
):
    rules = engine.rules.list_rules(rule_type=rule_type, enabled_only=enabled_only)
    return [RuleResponse(**plain(r)) for r in rules]


@router.put("/rules/{rule_id}", response_model=RuleResponse)
async def upsert_rule(
    rule_id: str,
    req: RuleRequest,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    """Create a rule, or replace it when the id exists (the version increments)."""
    rule = engine.rules.upsert_rule(
        rule_id,
        req.rule_type,
        req.name,
        actor.id,
        description=req.description,
        patterns=req.patterns,
        enabled=req.enabled,
        priority=req.priority,
    )
    return RuleResponse(**plain(rule))


@router.patch("/rules/{rule_id}/toggle", response_model=RuleResponse)
async def toggle_rule(
    rule_id: str,
    req: ToggleRequest,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    return RuleResponse(**plain(engine.rules.toggle_rule(rule_id, req.enabled, actor.id)))


@router.delete("/rules/{rule_id}")
async def delete_rule(
    rule_id: str,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    engine.rules.delete_rule(rule_id, actor.id)
    return {"deleted": True, "id": rule_id}


# =========================================================================
# Threat intelligence
# =========================================================================


@router.get("/threats", response_model=list[ThreatResponse])
async def list_threats(
    threat_type: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    active_only: bool = Query(False),
    engine: ModerationEngine = Depends(get_engine),
):
    threats = engine.threats.list_threats(threat_type=threat_type, category=category, active_only=active_only)
    return [ThreatResponse(**plain(t)) for t in threats]


@router.post("/threats", response_model=ThreatResponse, status_code=201)
async def add_threat(
    req: ThreatRequest,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    """Add a threat indicator; active text indicators feed the keyword analyzer."""
    entry = engine.threats.add_threat(
        req.threat_type,
        req.category,
        req.patterns,
        actor.id,
        severity=req.severity,
        confidence=req.confidence,
        source=req.source,
        description=req.description,
        context=req.context,
        geographic_scope=req.geographic_scope,
        languages=req.languages,
        expires_at=req.expires_at,
    )
    return ThreatResponse(**plain(entry))


@router.get("/threats/{threat_id}", response_model=ThreatResponse)
async def get_threat(threat_id: str, engine: ModerationEngine = Depends(get_engine)):
    return ThreatResponse(**plain(engine.threats.get_threat(threat_id)))


@router.post("/threats/{threat_id}/verify", response_model=ThreatResponse)
async def verify_threat(
    threat_id: str,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    return ThreatResponse(**plain(engine.threats.verify_threat(threat_id, actor.id)))


@router.patch("/threats/{threat_id}/active", response_model=ThreatResponse)
async def set_threat_active(
    threat_id: str,
    req: ThreatActiveRequest,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    return ThreatResponse(**plain(engine.threats.set_active(threat_id, req.is_active, actor.id)))
