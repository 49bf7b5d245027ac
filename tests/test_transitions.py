import pytest

from src.config import WorkOrderStatus as S
from src.core import ValidationException
from src.workorders.domain import TransitionValidator, normalize_legacy_status

ALL = list(S)


@pytest.mark.parametrize("current,requested", [
    (S.OPEN, S.IN_ANALYSIS),
    (S.IN_ANALYSIS, S.IN_EXECUTION),
    (S.IN_EXECUTION, S.COMPLETED),
    (S.IN_EXECUTION, S.PAUSED),
    (S.PAUSED, S.IN_EXECUTION),
    (S.COMPLETED, S.CLOSED),
])
def test_forward_path_is_allowed(current, requested):
    assert TransitionValidator.validate(current, requested).ok


@pytest.mark.parametrize("status", ALL)
def test_same_status_is_a_no_op(status):
    result = TransitionValidator.validate(status, status)
    assert result.ok
    assert result.reason is None


@pytest.mark.parametrize("current", [S.OPEN, S.IN_ANALYSIS, S.IN_EXECUTION, S.PAUSED, S.COMPLETED])
def test_cancel_is_allowed_from_every_non_final_status(current):
    assert TransitionValidator.validate(current, S.CANCELLED).ok


@pytest.mark.parametrize("current", [S.CLOSED, S.CANCELLED])
@pytest.mark.parametrize("requested", ALL)
def test_final_statuses_reject_every_change(current, requested):
    if requested == current:
        return
    result = TransitionValidator.validate(current, requested)
    assert not result.ok
    assert result.reason.startswith("order already finalized")
    assert f"{current.value} → {requested.value}" in result.reason


def test_skipping_a_phase_is_rejected():
    result = TransitionValidator.validate(S.OPEN, S.IN_EXECUTION)
    assert not result.ok
    assert result.reason == "invalid transition: open → in_execution"


def test_completed_cannot_go_back_to_execution():
    result = TransitionValidator.validate(S.COMPLETED, S.IN_EXECUTION)
    assert not result.ok
    assert "completed → in_execution" in result.reason


@pytest.mark.parametrize("current", [S.OPEN, S.IN_ANALYSIS, S.COMPLETED])
def test_pause_only_from_execution(current):
    result = TransitionValidator.validate(current, S.PAUSED)
    assert not result.ok
    assert result.reason.startswith("can only pause an order in execution")


@pytest.mark.parametrize("requested", [S.OPEN, S.IN_ANALYSIS, S.COMPLETED, S.CLOSED])
def test_paused_only_resumes_to_execution(requested):
    result = TransitionValidator.validate(S.PAUSED, requested)
    assert not result.ok
    assert result.reason.startswith("a paused order can only resume to in_execution")
    assert f"paused → {requested.value}" in result.reason


def test_finalized_rule_wins_over_cancel_rule():
    result = TransitionValidator.validate(S.CLOSED, S.CANCELLED)
    assert not result.ok
    assert "already finalized" in result.reason


def test_rejections_always_name_both_statuses():
    for current in ALL:
        for requested in ALL:
            result = TransitionValidator.validate(current, requested)
            if not result.ok:
                assert current.value in result.reason
                assert requested.value in result.reason


@pytest.mark.parametrize("raw,expected", [
    ("open", S.OPEN),
    ("approved", S.IN_ANALYSIS),
    ("scheduled", S.IN_ANALYSIS),
    ("assigned", S.IN_ANALYSIS),
    ("in_progress", S.IN_EXECUTION),
    ("  PAUSED ", S.PAUSED),
    (S.CLOSED, S.CLOSED),
])
def test_normalize_legacy_status(raw, expected):
    assert normalize_legacy_status(raw) == expected


@pytest.mark.parametrize("raw", ["", "   ", None, "on_fire"])
def test_normalize_legacy_status_rejects_unknown(raw):
    with pytest.raises(ValidationException):
        normalize_legacy_status(raw)
