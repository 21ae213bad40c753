"""Suspicious-activity flags and user behavior analysis.

Both work at the level of a user rather than a single message. Activity
flags use the additive score (a base per activity type plus a weight per
evidence item); behavior analysis derives its score from the user's recent
messages and flags.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Optional

from modguard.alerts.manager import AlertManager
from modguard.analysis.behavior import BehaviorInput, score_behavior
from modguard.config import ModerationConfig
from modguard.errors import ConflictError, ValidationError
from modguard.models.analysis import UserBehaviorAnalysis
from modguard.models.base import coerce_list
from modguard.models.flags import (
    ActivityStatus,
    EvidenceItem,
    InvestigationNote,
    Severity,
    SuspiciousActivityFlag,
)
from modguard.policy.engine import evaluate_activity, evaluate_behavior
from modguard.security.audit_log import AuditLogger
from modguard.store import ModerationStore
from modguard.utils.timeutil import new_id, now_iso, parse_iso, utcnow

logger = logging.getLogger(__name__)

_FINAL = (ActivityStatus.CONFIRMED, ActivityStatus.FALSE_POSITIVE, ActivityStatus.RESOLVED)

# Allowed next statuses. Finished investigations can still be escalated.
_TRANSITIONS: dict[ActivityStatus, tuple[ActivityStatus, ...]] = {
    ActivityStatus.PENDING: (ActivityStatus.INVESTIGATING, *_FINAL, ActivityStatus.ESCALATED),
    ActivityStatus.INVESTIGATING: (*_FINAL, ActivityStatus.ESCALATED),
    ActivityStatus.CONFIRMED: (ActivityStatus.ESCALATED,),
    ActivityStatus.FALSE_POSITIVE: (ActivityStatus.ESCALATED,),
    ActivityStatus.RESOLVED: (ActivityStatus.ESCALATED,),
    ActivityStatus.ESCALATED: (),
}


class ActivityService:
    def __init__(
        self,
        store: ModerationStore,
        audit: AuditLogger,
        alerts: AlertManager,
        config: ModerationConfig,
    ) -> None:
        self._store = store
        self._audit = audit
        self._alerts = alerts
        self._config = config

    # ------------------------------------------------------------------
    # Suspicious activity flags
    # ------------------------------------------------------------------

    def get_activity_flag(self, flag_id: str) -> SuspiciousActivityFlag:
        return self._store.activity_flags.require(flag_id)

    def list_activity_flags(
        self,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
        priority: Optional[str] = None,
    ) -> list[SuspiciousActivityFlag]:
        flags = self._store.activity_flags.find(
            lambda f: (user_id is None or f.flagged_user_id == user_id)
            and (status is None or f.status.value == status)
            and (priority is None or f.priority.value == priority)
        )
        flags.sort(key=lambda f: (f.risk_score, f.created_at), reverse=True)
        return flags

    def flag_activity(
        self,
        user_id: str,
        activity_type: str,
        description: str,
        flagged_by: str,
        *,
        evidence: Optional[list[Any]] = None,
        conversation_id: Optional[str] = None,
        severity: Optional[str] = None,
        detection_method: str = "manual",
    ) -> SuspiciousActivityFlag:
        """Record a behavior-level observation about *user_id*.

        *evidence* items are message ids or evidence dicts; every referenced
        message must exist.
        """
        if not user_id or not activity_type:
            raise ValidationError("user_id and activity_type are required")
        if not description:
            raise ValidationError("description is required")
        try:
            items = [
                EvidenceItem(message_id=e) if isinstance(e, str) else e
                for e in (evidence or [])
            ]
            items = coerce_list(EvidenceItem, items)
            sev = Severity(severity) if severity else None
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"invalid activity flag: {exc}") from exc
        for item in items:
            self._store.messages.require(item.message_id)
            item.preserved_at = item.preserved_at or now_iso()

        decision = evaluate_activity(activity_type, len(items), description, self._config, sev)
        flag = self._store.activity_flags.insert(
            SuspiciousActivityFlag(
                id=new_id(),
                flagged_user_id=user_id,
                activity_type=activity_type,
                description=description,
                risk_score=decision.risk_score,
                flagged_by=flagged_by,
                severity=decision.severity,
                priority=decision.priority,
                conversation_id=conversation_id,
                evidence=items,
                detection_method=detection_method,
                requires_review=decision.requires_review,
            )
        )

        if decision.alert is not None:
            alert = self._alerts.raise_alert(
                decision.alert,
                user_id=user_id,
                conversation_id=conversation_id,
                message_ids=[e.message_id for e in items],
                automatic=detection_method != "manual",
                actor=flagged_by,
            )
            flag = self._store.activity_flags.update(flag.id, lambda f: setattr(f, "alert_id", alert.id))

        self._audit.log_event(
            "flag_suspicious_activity",
            "content_moderation",
            flagged_by,
            target={
                "activity_flag_id": flag.id,
                "user_id": user_id,
                "conversation_id": conversation_id,
                "alert_id": flag.alert_id,
            },
            details={
                "activity_type": activity_type,
                "risk_score": flag.risk_score,
                "priority": flag.priority.value,
                "evidence_count": len(items),
            },
            severity="high" if flag.alert_id else "medium",
        )
        return flag

    def update_activity_status(
        self,
        flag_id: str,
        status: str,
        actor: str,
        note: str = "",
    ) -> SuspiciousActivityFlag:
        try:
            target = ActivityStatus(status)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        previous: dict[str, ActivityStatus] = {}

        def mutate(f: SuspiciousActivityFlag) -> None:
            if target not in _TRANSITIONS[f.status]:
                raise ConflictError(
                    f"activity flag '{flag_id}' cannot move from {f.status.value} to {target.value}"
                )
            previous["status"] = f.status
            f.status = target
            if note:
                f.investigation_notes.append(InvestigationNote(note=note, added_by=actor))

        flag = self._store.activity_flags.update(flag_id, mutate)
        self._audit.log_event(
            "update_activity_flag",
            "content_moderation",
            actor,
            target={"activity_flag_id": flag_id, "user_id": flag.flagged_user_id},
            details={"from": previous["status"].value, "to": target.value, "note": note},
        )
        return flag

    def add_investigation_note(self, flag_id: str, actor: str, note: str) -> SuspiciousActivityFlag:
        if not note:
            raise ValidationError("note is required")

        def mutate(f: SuspiciousActivityFlag) -> None:
            f.investigation_notes.append(InvestigationNote(note=note, added_by=actor))

        flag = self._store.activity_flags.update(flag_id, mutate)
        self._audit.log_event(
            "add_investigation_note",
            "content_moderation",
            actor,
            target={"activity_flag_id": flag_id, "user_id": flag.flagged_user_id},
            details={"note": note},
        )
        return flag

    # ------------------------------------------------------------------
    # Behavior analysis
    # ------------------------------------------------------------------

    def analyze_user_behavior(
        self,
        user_id: str,
        depth_days: int = 30,
        *,
        actor: str = "system",
        analysis_type: str = "routine",
    ) -> UserBehaviorAnalysis:
        if depth_days <= 0:
            raise ValidationError("depth_days must be positive")
        cutoff = utcnow() - timedelta(days=depth_days)

        def recent(ts: str) -> bool:
            dt = parse_iso(ts)
            return dt is not None and dt >= cutoff

        messages = self._store.messages.find(lambda m: m.sender_id == user_id and recent(m.sent_at))
        data = BehaviorInput(
            messages=messages,
            conversation_ids={m.conversation_id for m in messages},
            content_flags=self._store.content_flags.find(
                lambda f: f.flagged_user_id == user_id and recent(f.created_at)
            ),
            activity_flags=self._store.activity_flags.find(
                lambda f: f.flagged_user_id == user_id and recent(f.created_at)
            ),
        )
        settings = self._config.behavior
        scored = score_behavior(data, settings)
        decision = evaluate_behavior(user_id, scored.risk_score, settings)

        analysis = self._store.behavior_analyses.insert(
            UserBehaviorAnalysis(
                id=new_id(),
                user_id=user_id,
                analyzed_by=actor,
                risk_score=scored.risk_score,
                analysis_type=analysis_type,
                analysis_depth_days=depth_days,
                risk_factors=scored.risk_factors,
                risk_status=decision.risk_status,
                requires_action=decision.requires_action,
                monitoring_level=decision.monitoring_level,
                message_count=len(data.messages),
                conversation_count=len(data.conversation_ids),
                flag_count=len(data.content_flags),
            )
        )
        if decision.alert is not None:
            alert = self._alerts.raise_alert(decision.alert, user_id=user_id, automatic=True, actor=actor)
            analysis = self._store.behavior_analyses.update(
                analysis.id, lambda a: setattr(a, "alert_id", alert.id)
            )

        self._audit.log_event(
            "analyze_user_behavior",
            "content_moderation",
            actor,
            actor_type="system" if actor == "system" else "user",
            target={"user_id": user_id, "alert_id": analysis.alert_id},
            details={
                "risk_score": analysis.risk_score,
                "risk_status": analysis.risk_status,
                "monitoring_level": analysis.monitoring_level.value,
                "factors": [f.factor for f in analysis.risk_factors],
            },
            severity="high" if analysis.requires_action else "info",
        )
        logger.info(
            "User behavior analyzed",
            extra={"user_id": user_id, "risk_score": analysis.risk_score},
        )
        return analysis

    def latest_behavior(self, user_id: str) -> Optional[UserBehaviorAnalysis]:
        analyses = self._store.behavior_analyses.find(lambda a: a.user_id == user_id)
        return max(analyses, key=lambda a: a.created_at) if analyses else None
