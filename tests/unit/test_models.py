"""
Unit tests for workspace_migration.models.

Tests cover:
- Legacy -> workspace subscription status mapping
- Severity and impact penalties
- ValidationIssue / ValidationWarning construction and truncation
- MigrationOptions validation and dict conversion
- OrchestratorState transitions
- ReportType parsing
- Half-up rounding
"""

import pytest

from workspace_migration.exceptions import InvalidConfigurationError
from workspace_migration.models import (
    MAX_AFFECTED_IDS,
    MigrationOptions,
    MigrationResult,
    OrchestratorState,
    ReportType,
    ScanResult,
    Severity,
    SubscriptionStatus,
    ValidationIssue,
    ValidationWarning,
    WarningImpact,
    WorkspaceSubscriptionStatus,
    map_subscription_status,
    round_half_up,
)


class TestStatusMapping:
    """Tests for map_subscription_status."""

    @pytest.mark.parametrize(
        ("legacy", "expected"),
        [
            ("trial", WorkspaceSubscriptionStatus.TRIAL),
            ("active", WorkspaceSubscriptionStatus.ACTIVE),
            ("grace_period", WorkspaceSubscriptionStatus.PAST_DUE),
            ("inactive", WorkspaceSubscriptionStatus.PAST_DUE),
            ("expired", WorkspaceSubscriptionStatus.EXPIRED),
            ("cancelled", WorkspaceSubscriptionStatus.CANCELED),
            ("suspended", WorkspaceSubscriptionStatus.CANCELED),
        ],
    )
    def test_known_statuses(self, legacy: str, expected: WorkspaceSubscriptionStatus) -> None:
        assert map_subscription_status(legacy) is expected

    def test_every_legacy_status_is_mapped(self) -> None:
        for status in SubscriptionStatus:
            assert isinstance(map_subscription_status(status.value), WorkspaceSubscriptionStatus)

    @pytest.mark.parametrize("value", ["unknown", "", "ACTIVE", None])
    def test_unknown_status_maps_to_trial(self, value: str | None) -> None:
        assert map_subscription_status(value) is WorkspaceSubscriptionStatus.TRIAL


class TestPenalties:
    def test_severity_penalties(self) -> None:
        assert Severity.CRITICAL.penalty == 20
        assert Severity.ERROR.penalty == 10
        assert Severity.WARNING.penalty == 5

    def test_impact_penalties(self) -> None:
        assert WarningImpact.HIGH.penalty == 5
        assert WarningImpact.MEDIUM.penalty == 3
        assert WarningImpact.LOW.penalty == 1


class TestValidationIssue:
    """Tests for ValidationIssue and ValidationWarning."""

    def test_create_counts_all_ids_but_truncates_list(self) -> None:
        ids = [f"user-{i}" for i in range(MAX_AFFECTED_IDS + 25)]
        issue = ValidationIssue.create(Severity.ERROR, "orphaned_users", "Orphans", ids)

        assert issue.count == MAX_AFFECTED_IDS + 25
        assert len(issue.affected_ids) == MAX_AFFECTED_IDS
        assert issue.affected_ids[0] == "user-0"

    def test_explicit_count_wins(self) -> None:
        issue = ValidationIssue.create(Severity.WARNING, "x", "X", ["a"], count=7)
        assert issue.count == 7

    def test_to_dict_uses_camel_case(self) -> None:
        issue = ValidationIssue.create(
            Severity.CRITICAL, "invalid_workspaces", "Bad", ["w1"], fix="Fix it"
        )
        assert issue.to_dict() == {
            "severity": "critical",
            "category": "invalid_workspaces",
            "description": "Bad",
            "affectedIds": ["w1"],
            "count": 1,
            "fix": "Fix it",
        }

    def test_to_dict_omits_missing_fix(self) -> None:
        issue = ValidationIssue.create(Severity.ERROR, "x", "X", [])
        assert "fix" not in issue.to_dict()

    def test_issue_is_frozen(self) -> None:
        issue = ValidationIssue.create(Severity.ERROR, "x", "X", [])
        with pytest.raises(AttributeError):
            issue.count = 3  # type: ignore

    def test_warning_to_dict(self) -> None:
        warning = ValidationWarning.create(
            "legacy_user_subscriptions", "Legacy", ["s1", "s2"], WarningImpact.MEDIUM
        )
        data = warning.to_dict()
        assert data["impact"] == "medium"
        assert data["count"] == 2
        assert data["affectedIds"] == ["s1", "s2"]


class TestScanResult:
    def test_extend_and_descriptions(self) -> None:
        first = ScanResult(issues=[ValidationIssue.create(Severity.ERROR, "a", "Issue A", [])])
        second = ScanResult(
            warnings=[ValidationWarning.create("b", "Warning B", [], WarningImpact.LOW)]
        )

        first.extend(second)

        assert first.descriptions() == ["Issue A", "Warning B"]


class TestMigrationResult:
    def test_to_dict(self) -> None:
        result = MigrationResult(
            success=False,
            workspaces_created=2,
            subscriptions_migrated=1,
            users_updated=2,
            errors=("boom",),
        )
        assert result.to_dict() == {
            "success": False,
            "workspacesCreated": 2,
            "subscriptionsMigrated": 1,
            "usersUpdated": 2,
            "errors": ["boom"],
        }


class TestMigrationOptions:
    """Tests for MigrationOptions."""

    def test_defaults(self) -> None:
        options = MigrationOptions()
        assert options.dry_run is False
        assert options.batch_size == 50
        assert options.enable_backup is True
        assert options.enable_progress_tracking is True
        assert options.enable_integrity_checks is True
        assert options.continue_on_error is False

    @pytest.mark.parametrize("batch_size", [0, -5])
    def test_rejects_non_positive_batch_size(self, batch_size: int) -> None:
        with pytest.raises(InvalidConfigurationError) as exc_info:
            MigrationOptions(batch_size=batch_size)
        assert exc_info.value.field == "batch_size"

    def test_invalid_configuration_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            MigrationOptions(batch_size=0)

    def test_from_dict_fills_defaults(self) -> None:
        options = MigrationOptions.from_dict({"batchSize": 10, "enableBackup": False})
        assert options.batch_size == 10
        assert options.enable_backup is False
        assert options.enable_progress_tracking is True

    def test_dict_conversion_preserves_values(self) -> None:
        options = MigrationOptions(dry_run=True, batch_size=7, continue_on_error=True)
        assert MigrationOptions.from_dict(options.to_dict()) == options


class TestOrchestratorState:
    """Tests for OrchestratorState transitions."""

    def test_happy_path_is_allowed(self) -> None:
        path = [
            OrchestratorState.IDLE,
            OrchestratorState.PRE_CHECKING,
            OrchestratorState.MIGRATING,
            OrchestratorState.SAVING_PROGRESS,
            OrchestratorState.POST_VALIDATING,
            OrchestratorState.POST_CHECKING,
            OrchestratorState.DONE,
        ]
        for current, target in zip(path, path[1:], strict=False):
            assert current.can_transition_to(target)

    def test_optional_steps_can_be_skipped(self) -> None:
        assert OrchestratorState.IDLE.can_transition_to(OrchestratorState.MIGRATING)
        assert OrchestratorState.MIGRATING.can_transition_to(OrchestratorState.POST_VALIDATING)

    def test_cannot_move_backwards(self) -> None:
        assert not OrchestratorState.POST_CHECKING.can_transition_to(OrchestratorState.MIGRATING)
        assert not OrchestratorState.MIGRATING.can_transition_to(OrchestratorState.MIGRATING)

    def test_failed_reachable_from_non_terminal_states(self) -> None:
        for state in OrchestratorState:
            if not state.is_terminal:
                assert state.can_transition_to(OrchestratorState.FAILED)

    def test_terminal_states_only_restart_at_idle(self) -> None:
        for state in (OrchestratorState.DONE, OrchestratorState.FAILED):
            assert state.is_terminal
            assert state.can_transition_to(OrchestratorState.IDLE)
            assert not state.can_transition_to(OrchestratorState.MIGRATING)
            assert not state.can_transition_to(OrchestratorState.FAILED)

    def test_camel_case_values(self) -> None:
        assert OrchestratorState.PRE_CHECKING.value == "preChecking"
        assert OrchestratorState.SAVING_PROGRESS.value == "savingProgress"


class TestReportType:
    def test_parse_values(self) -> None:
        assert ReportType.parse("daily") is ReportType.DAILY
        assert ReportType.parse("on_demand") is ReportType.ON_DEMAND
        assert ReportType.parse(ReportType.WEEKLY) is ReportType.WEEKLY

    def test_parse_rejects_unknown(self) -> None:
        with pytest.raises(InvalidConfigurationError, match="daily, weekly, on_demand"):
            ReportType.parse("hourly")


class TestRoundHalfUp:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [(2.5, 3), (3.5, 4), (2.49, 2), (0.0, 0), (62.5, 63), (99.5, 100)],
    )
    def test_rounds_halves_up(self, value: float, expected: int) -> None:
        assert round_half_up(value) == expected
