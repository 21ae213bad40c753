"""Tests for batched conversation scans and scan resumption."""

import tempfile
import threading

import pytest

from modguard.errors import ConflictError, ValidationError
from modguard.models.alerts import AlertCategory, AlertSeverity
from modguard.models.analysis import ScanStatus
from modguard.models.flags import FlaggedBy

from engine_support import ScriptedAnalyzer, make_engine, seed_conversation, seed_message


class CancellingAnalyzer(ScriptedAnalyzer):
    """Sets *cancel* once it has analyzed ``after`` messages."""

    def __init__(self, cancel: threading.Event, after: int, default: float):
        super().__init__(default=default)
        self.cancel = cancel
        self.after = after

    def analyze(self, content, analysis_type):
        result = super().analyze(content, analysis_type)
        if len(self.calls) >= self.after:
            self.cancel.set()
        return result


def _conversation(engine, count: int):
    seed_conversation(engine)
    for i in range(count):
        seed_message(engine, f"m{i:02d}", f"message {i}", sent_at=f"2099-01-01T00:{i:02d}:00+00:00")


# --- Scan Tests ---


def test_scan_keeps_only_flags_above_threshold():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = make_engine(tmpdir, {"message 0": 0.7, "message 1": 0.3, "message 2": 0.31})
        _conversation(engine, 4)

        summary = engine.scan_conversation("conv-1")

        assert summary.status == ScanStatus.COMPLETED
        assert summary.total_messages == 4
        assert summary.scanned_messages == 4
        assert summary.flagged_messages == 2
        assert summary.total_risk == pytest.approx(1.01)
        assert summary.alert_id is None

        flags = engine.flags.list_flags(flagged_by="system_scan").items
        assert {f.message_id for f in flags} == {"m00", "m02"}
        assert all(f.scan_id == summary.scan_id for f in flags)
        assert all(f.flagged_by == FlaggedBy.SYSTEM_SCAN for f in flags)


def test_heavily_flagged_scan_raises_alert():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = make_engine(tmpdir, analyzer=ScriptedAnalyzer(default=0.4))
        _conversation(engine, 6)

        summary = engine.scan_conversation("conv-1", actor="mod")

        assert summary.flagged_messages == 6
        alert = engine.alerts.get_alert(summary.alert_id)
        assert alert.category == AlertCategory.COORDINATED_THREATS
        assert alert.severity == AlertSeverity.MEDIUM
        assert len(alert.related_flag_ids) == 6


def test_interrupted_scan_resumes_without_duplicates():
    with tempfile.TemporaryDirectory() as tmpdir:
        cancel = threading.Event()
        analyzer = CancellingAnalyzer(cancel, after=10, default=0.5)
        engine = make_engine(tmpdir, analyzer=analyzer)
        _conversation(engine, 15)

        first = engine.scan_conversation("conv-1", cancel=cancel)
        assert first.status == ScanStatus.INTERRUPTED
        assert first.scanned_messages == 10
        assert engine.scanner.get_scan(first.scan_id).status == ScanStatus.INTERRUPTED

        cancel.clear()
        analyzer.after = 10_000
        resumed = engine.scan_conversation("conv-1", scan_id=first.scan_id)

        assert resumed.status == ScanStatus.COMPLETED
        assert resumed.scanned_messages == 15
        assert len(analyzer.calls) == 15
        flags = engine.flags.list_flags(limit=100).items
        assert sorted(f.message_id for f in flags) == [f"m{i:02d}" for i in range(15)]

        with pytest.raises(ConflictError):
            engine.scan_conversation("conv-1", scan_id=first.scan_id)


def test_cancel_before_first_batch():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = make_engine(tmpdir, analyzer=ScriptedAnalyzer(default=0.5))
        _conversation(engine, 3)
        cancel = threading.Event()
        cancel.set()

        summary = engine.scan_conversation("conv-1", cancel=cancel)

        assert summary.status == ScanStatus.INTERRUPTED
        assert summary.scanned_messages == 0
        assert engine.flags.list_flags().total == 0


def test_analyzer_outage_during_scan_is_pending():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = make_engine(tmpdir, analyzer=ScriptedAnalyzer(offline=True))
        _conversation(engine, 2)

        summary = engine.scan_conversation("conv-1")

        assert summary.flagged_messages == 0
        assert summary.analysis_pending == 2


def test_scan_validation():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = make_engine(tmpdir)
        _conversation(engine, 1)
        with pytest.raises(ValidationError):
            engine.scan_conversation("conv-1", lookback_days=0)
        with pytest.raises(ValidationError):
            engine.scan_conversation("conv-1", analysis_types=["telepathy"])
