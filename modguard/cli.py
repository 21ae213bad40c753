"""modguard CLI: operate the moderation engine from a terminal."""

import json

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from modguard import __version__
from modguard.config import load_config
from modguard.errors import ModerationError
from modguard.utils.log import setup_logging

console = Console()

SEVERITY_STYLE = {
    "low": "green",
    "medium": "yellow",
    "high": "red",
    "critical": "bold red",
    "emergency": "bold white on red",
    "info": "dim",
}


class ModguardGroup(click.Group):
    """Prints engine errors as one line and exits non-zero."""

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except ModerationError as exc:
            console.print(f"[red]{exc.code}:[/] {exc.message}")
            ctx.exit(1)


def _engine(ctx: click.Context):
    from modguard.engine import ModerationEngine

    if "engine" not in ctx.obj:
        ctx.obj["engine"] = ModerationEngine(ctx.obj["config"])
    return ctx.obj["engine"]


def _sev(value) -> str:
    if value is None:
        return "-"
    text = getattr(value, "value", value)
    return f"[{SEVERITY_STYLE.get(text, '')}]{text}[/]"


@click.group(cls=ModguardGroup)
@click.version_option(version=__version__)
@click.option("--config", "config_path", default=None, help="YAML config file (default: $MODGUARD_CONFIG)")
@click.option("--base-dir", default=None, help="Storage directory (overrides config)")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, base_dir: str | None):
    """modguard: content-risk moderation and escalation engine.

    Score messages, review flags, suspend users, preserve evidence and
    file law-enforcement reports from the command line.
    """
    config = load_config(config_path)
    if base_dir:
        config.base_dir = base_dir
    setup_logging(config.log_level)
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


# ── Content ──────────────────────────────────────────────────────────


@main.command()
@click.argument("message_id")
@click.option("--type", "analysis_type", default="comprehensive",
              type=click.Choice(["text", "image", "comprehensive"]))
@click.option("--actor", default="system")
@click.pass_context
def submit(ctx: click.Context, message_id: str, analysis_type: str, actor: str):
    """Score a stored message and record a content flag."""
    flag = _engine(ctx).submit_content(message_id, analysis_type, actor=actor)
    if flag.risk_score is None:
        console.print(f"[yellow]Analysis pending[/] for flag {flag.id}: {flag.analysis_details.get('error', '')}")
        return
    console.print(
        Panel(
            f"Risk score: [bold]{flag.risk_score:.2f}[/]  Severity: {_sev(flag.severity)}\n"
            f"Review required: {flag.review_required}  Escalated: {flag.escalated}",
            title=f"Content flag {flag.id}",
        )
    )


@main.command()
@click.argument("flag_id")
@click.argument("decision", type=click.Choice(["confirmed", "false_positive", "resolved", "escalated"]))
@click.option("--reviewer", required=True)
@click.option("--action", "moderation_action", default="none",
              type=click.Choice(["none", "warn", "hide_message", "block_user", "report_authorities",
                                 "emergency_block", "preserve_evidence"]))
@click.option("--notes", default="")
@click.option("--escalate-to", default=None)
@click.pass_context
def review(ctx: click.Context, flag_id: str, decision: str, reviewer: str, moderation_action: str,
           notes: str, escalate_to: str | None):
    """Record a reviewer's decision on a content flag."""
    outcome = _engine(ctx).review_flag(
        flag_id,
        reviewer,
        decision,
        moderation_action,
        notes=notes,
        escalate=escalate_to is not None,
        escalate_to=escalate_to,
    )
    console.print(f"[green]Flag {outcome.flag.id} -> {outcome.flag.status.value}[/]")
    if outcome.action:
        console.print(f"  Action {outcome.action.action.value} executed"
                      + (f", alert {outcome.action.alert_id}" if outcome.action.alert_id else ""))


@main.command()
@click.argument("flag_id")
@click.argument("target", type=click.Choice(["law_enforcement", "ncmec", "admin", "legal_team"]))
@click.option("--actor", required=True)
@click.option("--reason", default="")
@click.pass_context
def escalate(ctx: click.Context, flag_id: str, target: str, actor: str, reason: str):
    """Manually escalate a content flag."""
    flag = _engine(ctx).flags.escalate_flag(flag_id, target, actor, reason)
    console.print(f"[green]Flag {flag.id} escalated to {target}[/]")


@main.command()
@click.argument("flag_id", required=False)
@click.option("--status", default=None)
@click.option("--severity", default=None)
@click.option("--user", "user_id", default=None)
@click.option("--page", default=1, type=int)
@click.option("--limit", default=20, type=int)
@click.pass_context
def flags(ctx: click.Context, flag_id: str | None, status: str | None, severity: str | None,
          user_id: str | None, page: int, limit: int):
    """List content flags, or show one in full."""
    engine = _engine(ctx)
    if flag_id:
        from modguard.models.base import to_dict

        console.print_json(json.dumps(to_dict(engine.flags.get_flag(flag_id)), default=str))
        return

    result = engine.flags.list_flags(status=status, severity=severity, user_id=user_id, page=page, limit=limit)
    table = Table(title=f"Content flags (page {result.page}/{result.pages}, {result.total} total)")
    table.add_column("ID", style="cyan")
    table.add_column("Risk", justify="right")
    table.add_column("Severity")
    table.add_column("Status")
    table.add_column("By")
    table.add_column("Escalated")
    for f in result.items:
        table.add_row(
            f.id,
            "pending" if f.risk_score is None else f"{f.risk_score:.2f}",
            _sev(f.severity),
            f.status.value,
            f.flagged_by.value,
            f.escalated_to.value if f.escalated_to else "",
        )
    console.print(table)
    console.print(f"Average risk {result.summary.average_risk:.2f}; by severity {result.summary.by_severity}")


@main.command()
@click.argument("conversation_id")
@click.option("--days", default=7, type=int, help="Lookback window in days")
@click.option("--resume", "scan_id", default=None, help="Resume an interrupted scan")
@click.pass_context
def scan(ctx: click.Context, conversation_id: str, days: int, scan_id: str | None):
    """Re-analyze a conversation's recent messages."""
    summary = _engine(ctx).scan_conversation(conversation_id, days, scan_id=scan_id)
    console.print(
        Panel(
            f"Scanned {summary.scanned_messages}/{summary.total_messages} messages\n"
            f"Flagged {summary.flagged_messages} (total risk {summary.total_risk:.2f}), "
            f"{summary.analysis_pending} pending analysis\n"
            f"Alert: {summary.alert_id or 'none'}",
            title=f"Scan {summary.scan_id} [{summary.status.value}]",
        )
    )


# ── Enforcement ──────────────────────────────────────────────────────


@main.command()
@click.argument("user_id")
@click.option("--reason", required=True)
@click.option("--severity", default="major",
              type=click.Choice(["minor", "major", "severe", "critical"]))
@click.option("--hours", type=float, default=None, help="Duration; omit for a permanent ban")
@click.option("--actor", required=True)
@click.option("--role", default="moderator", type=click.Choice(["admin", "moderator", "reviewer"]))
@click.pass_context
def suspend(ctx: click.Context, user_id: str, reason: str, severity: str, hours: float | None, actor: str,
            role: str):
    """Suspend a user, replacing any active suspension."""
    s = _engine(ctx).suspend_user(user_id, reason, severity, hours, actor=actor, actor_role=role)
    until = s.expires_at or "permanent"
    console.print(f"[green]Suspension {s.id}[/] ({s.type.value}, {s.severity.value}) until {until}")


@main.command()
@click.argument("suspension_id")
@click.option("--actor", required=True)
@click.option("--role", default="moderator", type=click.Choice(["admin", "moderator", "reviewer"]))
@click.option("--reason", default="")
@click.pass_context
def lift(ctx: click.Context, suspension_id: str, actor: str, role: str, reason: str):
    """Lift an active suspension."""
    s = _engine(ctx).suspensions.lift(suspension_id, actor, role, reason)
    console.print(f"[green]Suspension {s.id} lifted[/]")


@main.command()
@click.argument("flag_id")
@click.option("--agency", default="other",
              type=click.Choice(["fbi", "dea", "atf", "ice", "local_police", "interpol", "ncmec", "other"]))
@click.option("--urgency", default="priority", type=click.Choice(["routine", "priority", "urgent", "emergency"]))
@click.option("--info", "additional_info", default="")
@click.option("--actor", required=True)
@click.pass_context
def report(ctx: click.Context, flag_id: str, agency: str, urgency: str, additional_info: str, actor: str):
    """File a law-enforcement report from a content flag."""
    r = _engine(ctx).report_to_authorities(
        flag_id, agency, urgency, actor=actor, additional_info=additional_info
    )
    console.print(f"[green]Case {r.case_id}[/] filed with {r.external_agency.value} ({r.status.value})")
    if r.preservation_notice:
        console.print(f"  Evidence hold {r.preservation_notice.hold_id} until {r.preservation_notice.expires_at}")


# ── Privacy ──────────────────────────────────────────────────────────


@main.command()
@click.argument("conversation_id")
@click.argument("user_id")
@click.option("--method", default="screenshot")
@click.option("--message", "message_id", default=None)
@click.pass_context
def screenshot(ctx: click.Context, conversation_id: str, user_id: str, method: str, message_id: str | None):
    """Record a screenshot attempt."""
    result = _engine(ctx).record_screenshot_attempt(conversation_id, user_id, method, message_id=message_id)
    style = "yellow" if result.blocked else "green"
    console.print(f"[{style}]{'Blocked' if result.blocked else 'Allowed'}[/]: {result.message}")


# ── Maintenance ──────────────────────────────────────────────────────


@main.command()
@click.option("--op", "operations", multiple=True, default=("all",),
              type=click.Choice(["all", "expire_suspensions", "expire_holds", "cleanup_messages", "cleanup_logs"]))
@click.pass_context
def maintenance(ctx: click.Context, operations: tuple):
    """Run maintenance sweeps."""
    results = _engine(ctx).run_maintenance(list(operations))
    table = Table(title="Maintenance results")
    table.add_column("Result")
    table.add_column("Count", justify="right")
    for key, value in results.items():
        table.add_row(key, str(value))
    console.print(table)


@main.command()
@click.argument("cleanup_type",
                type=click.Choice(["expired_messages", "old_logs", "expired_suspensions", "expired_holds"]))
@click.option("--dry-run", is_flag=True, help="Count only; change nothing")
@click.option("--conversation", "conversation_id", default=None)
@click.pass_context
def cleanup(ctx: click.Context, cleanup_type: str, dry_run: bool, conversation_id: str | None):
    """Bulk cleanup of one kind of expired data."""
    criteria = {"conversation_id": conversation_id} if conversation_id else {}
    result = _engine(ctx).bulk_cleanup(cleanup_type, criteria, dry_run)
    if dry_run:
        console.print(f"[yellow]Dry run:[/] would delete {result.would_delete}")
    else:
        console.print(f"[green]Deleted {result.deleted}[/]")
    if result.skipped_held:
        console.print(f"  {result.skipped_held} kept under evidence hold")
    if result.errors:
        console.print(f"  [red]{result.errors} records could not be processed[/]")


# ── Security ─────────────────────────────────────────────────────────


@main.command()
@click.option("--status", default=None)
@click.option("--min-severity", default=None)
@click.option("--limit", default=50, type=int)
@click.pass_context
def alerts(ctx: click.Context, status: str | None, min_severity: str | None, limit: int):
    """List security alerts."""
    items = _engine(ctx).alerts.list_alerts(status=status, min_severity=min_severity, limit=limit)
    table = Table(title=f"Security alerts ({len(items)})")
    table.add_column("ID", style="cyan")
    table.add_column("Severity")
    table.add_column("Category")
    table.add_column("Status")
    table.add_column("Title")
    for a in items:
        table.add_row(a.id, _sev(a.severity), a.category.value, a.status.value, a.title[:60])
    console.print(table)


@main.command()
@click.option("--action", default=None)
@click.option("--actor", default=None)
@click.option("--failed", is_flag=True, help="Only failed attempts")
@click.option("--format", "fmt", default="table", type=click.Choice(["table", "json", "csv"]))
@click.option("--limit", default=50, type=int)
@click.pass_context
def audit(ctx: click.Context, action: str | None, actor: str | None, failed: bool, fmt: str, limit: int):
    """Show the audit log."""
    log = _engine(ctx).audit
    filters = {"action": action, "actor": actor, "success": False if failed else None}
    if fmt != "table":
        click.echo(log.export_events(fmt, limit=limit, **filters))
        return

    table = Table(title="Audit log")
    table.add_column("Time", style="dim")
    table.add_column("Action", style="cyan")
    table.add_column("Actor")
    table.add_column("Severity")
    table.add_column("OK")
    for e in log.get_events(limit=limit, **filters):
        table.add_row(
            e.timestamp[:19],
            e.action,
            e.actor,
            _sev(e.severity),
            "[green]v[/]" if e.outcome.success else f"[red]x[/] {e.outcome.error_code or ''}",
        )
    console.print(table)


@main.command(name="import-rules")
@click.argument("rules_path")
@click.option("--actor", required=True)
@click.pass_context
def import_rules(ctx: click.Context, rules_path: str, actor: str):
    """Load moderation rules from a YAML file."""
    saved = _engine(ctx).rules.import_yaml(rules_path, actor)
    console.print(f"[green]Imported {len(saved)} rules[/]")


@main.command(name="add-threat")
@click.argument("threat_type")
@click.argument("patterns", nargs=-1, required=True)
@click.option("--category", default="keyword",
              type=click.Choice(["keyword", "phrase", "pattern", "behavior", "network", "temporal"]))
@click.option("--severity", default="medium", type=click.Choice(["low", "medium", "high", "critical"]))
@click.option("--source", default="manual")
@click.option("--description", default="")
@click.option("--expires-at", default=None, help="ISO-8601 expiry")
@click.option("--actor", required=True)
@click.pass_context
def add_threat(ctx: click.Context, threat_type: str, patterns: tuple, category: str, severity: str,
               source: str, description: str, expires_at: str | None, actor: str):
    """Add an indicator to the threat intelligence database."""
    entry = _engine(ctx).threats.add_threat(
        threat_type, category, list(patterns), actor,
        severity=severity, source=source, description=description, expires_at=expires_at,
    )
    console.print(f"[green]Threat {entry.threat_id}[/] ({entry.threat_type.value}, {len(entry.patterns)} patterns)")


@main.command()
@click.option("--type", "threat_type", default=None)
@click.option("--active-only", is_flag=True)
@click.pass_context
def threats(ctx: click.Context, threat_type: str | None, active_only: bool):
    """List threat intelligence entries."""
    items = _engine(ctx).threats.list_threats(threat_type=threat_type, active_only=active_only)
    table = Table(title=f"Threat indicators ({len(items)})")
    table.add_column("Threat", style="cyan")
    table.add_column("Type")
    table.add_column("Category")
    table.add_column("Severity")
    table.add_column("Active")
    table.add_column("Patterns")
    for t in items:
        table.add_row(
            t.threat_id,
            t.threat_type.value,
            t.category.value,
            _sev(t.severity),
            "yes" if t.is_active else "no",
            ", ".join(p.value for p in t.patterns)[:60],
        )
    console.print(table)


if __name__ == "__main__":
    main()
