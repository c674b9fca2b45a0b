"""
Unit tests for the Result types module.
"""

from nebulaflow_toolkit.shared.results import (
    ErrorSeverity,
    ProcessingError,
    ReconciliationSummary,
    Result,
)


class TestProcessingError:
    """Tests for ProcessingError dataclass."""

    def test_create_error(self):
        error = ProcessingError(
            source="test",
            message="Test error message",
            severity=ErrorSeverity.ERROR,
        )
        assert error.source == "test"
        assert error.severity == ErrorSeverity.ERROR
        assert error.context == {}
        assert error.exception is None

    def test_create_error_with_context(self):
        error = ProcessingError(
            source="validate_entry",
            message="RPC failed",
            severity=ErrorSeverity.WARNING,
            context={"key": "0xabc", "activity_id": 4},
        )
        assert error.context["key"] == "0xabc"
        assert error.context["activity_id"] == 4

    def test_to_dict_omits_exception(self):
        error = ProcessingError(
            source="ledger_count",
            message="unreachable",
            severity=ErrorSeverity.CRITICAL,
            context={"consecutive_failures": 2},
            exception=ConnectionError("refused"),
        )
        assert error.to_dict() == {
            "source": "ledger_count",
            "message": "unreachable",
            "severity": "critical",
            "context": {"consecutive_failures": 2},
        }


class TestResult:
    """Tests for Result[T] generic class."""

    def test_ok_result(self):
        result = Result.ok([1, 2])
        assert result.success is True
        assert result.data == [1, 2]
        assert result.errors == []

    def test_fail_result_carries_fallback_data(self):
        """A failed pass still hands back the cached snapshot."""
        error = ProcessingError(
            source="ledger_count",
            message="unreachable",
            severity=ErrorSeverity.CRITICAL,
        )
        result = Result.fail(error, data=["cached"])
        assert result.success is False
        assert result.data == ["cached"]
        assert result.errors == [error]

    def test_fail_with_message(self):
        result = Result.fail_with_message(
            source="refresh_participation",
            message="Quick error",
            context={"key": "0xabc"},
        )
        assert result.success is False
        assert result.data is None
        assert result.errors[0].severity == ErrorSeverity.ERROR
        assert result.errors[0].context["key"] == "0xabc"

    def test_add_warning_keeps_success(self):
        result = Result.ok("data")
        result.add_warning(source="discover_entry", message="skipped id 4")
        assert result.success is True
        assert result.has_warnings() is True
        assert result.has_errors() is False

    def test_is_partial(self):
        result = Result.ok("data")
        assert result.is_partial is False
        result.add_warning(source="validate_entry", message="timeout")
        assert result.is_partial is True

        failed = Result.fail_with_message(
            source="superseded",
            message="newer pass",
            severity=ErrorSeverity.WARNING,
        )
        assert failed.is_partial is False

    def test_has_errors_with_critical(self):
        result = Result.fail_with_message(
            source="test", message="critical", severity=ErrorSeverity.CRITICAL
        )
        assert result.has_errors() is True

    def test_get_error_messages(self):
        result = Result.ok("data")
        result.add_warning(source="test1", message="warning 1")
        result.add_error(
            ProcessingError(
                source="test2", message="error 2", severity=ErrorSeverity.ERROR
            )
        )
        assert result.get_error_messages() == ["warning 1", "error 2"]


class TestReconciliationSummary:
    """Tests for ReconciliationSummary dataclass."""

    def test_create_summary(self):
        summary = ReconciliationSummary(user_address="0xabc")
        assert summary.user_address == "0xabc"
        assert summary.ledger_count is None
        assert summary.entries_removed == 0
        assert summary.superseded is False
        assert summary.errors == []

    def test_add_error_from_result(self):
        summary = ReconciliationSummary(user_address=None)
        result = Result.ok("data")
        result.add_warning(source="test1", message="warning")
        result.add_error(
            ProcessingError(
                source="test2", message="error", severity=ErrorSeverity.ERROR
            )
        )
        summary.add_error_from_result(result)
        assert len(summary.errors) == 2

    def test_counts_by_severity(self):
        summary = ReconciliationSummary(user_address=None)
        for severity in (
            ErrorSeverity.WARNING,
            ErrorSeverity.WARNING,
            ErrorSeverity.ERROR,
            ErrorSeverity.CRITICAL,
        ):
            summary.add_error(
                ProcessingError(source="t", message="m", severity=severity)
            )
        assert summary.warning_count() == 2
        assert summary.error_count() == 2
        assert summary.has_errors() is True
        assert summary.has_critical_errors() is True

    def test_no_critical_errors(self):
        summary = ReconciliationSummary(user_address=None)
        summary.add_error(
            ProcessingError(source="t", message="m", severity=ErrorSeverity.ERROR)
        )
        assert summary.has_critical_errors() is False

    def test_to_dict(self):
        summary = ReconciliationSummary(
            user_address="0xabc",
            ledger_count=12,
            entries_cached=10,
            entries_validated=8,
            entries_unvalidated=2,
            entries_removed=1,
        )
        summary.removed.append({"key": "0xdef", "id": 40, "reason": "id_out_of_range"})
        d = summary.to_dict()
        assert d["ledger_count"] == 12
        assert d["validation_rate"] == "8/10"
        assert d["counts"]["removed"] == 1
        assert d["removed"][0]["reason"] == "id_out_of_range"

    def test_to_dict_with_no_totals(self):
        d = ReconciliationSummary(user_address=None).to_dict()
        assert d["validation_rate"] == "N/A"
