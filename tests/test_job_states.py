"""
任务状态机：合法/非法迁移、终态、抽取阶段进度映射。
"""

import pytest

from litgraph.research.states import (
    ANALYZABLE,
    SCREENING_EDITABLE,
    JobStatus,
    can_transition,
    extraction_progress,
    is_terminal,
)

S = JobStatus

HAPPY_PATH = [S.pending, S.searching, S.awaiting_screening, S.extracting, S.building, S.analyzing, S.completed]


def test_happy_path_is_legal():
    for current, target in zip(HAPPY_PATH, HAPPY_PATH[1:]):
        assert can_transition(current, target), (current, target)


@pytest.mark.parametrize("current,target", [
    (S.pending, S.extracting),
    (S.searching, S.building),
    (S.awaiting_screening, S.completed),
    (S.building, S.extracting),
    (S.analyzing, S.building),
    (S.completed, S.searching),
    (S.cancelled, S.extracting),
])
def test_illegal_moves(current, target):
    assert not can_transition(current, target)


@pytest.mark.parametrize("current", [s for s in S if s not in (S.completed, S.failed, S.cancelled)])
def test_failed_and_cancelled_reachable_from_any_live_status(current):
    assert can_transition(current, S.failed)
    assert can_transition(current, S.cancelled)


@pytest.mark.parametrize("terminal", [S.completed, S.failed, S.cancelled])
def test_terminal_statuses_cannot_fail_or_cancel(terminal):
    assert is_terminal(terminal)
    assert not can_transition(terminal, S.failed)
    assert not can_transition(terminal, S.cancelled)


def test_reanalysis_reopens_completed_and_failed():
    assert can_transition(S.completed, S.extracting)
    assert can_transition(S.failed, S.extracting)
    assert not can_transition(S.cancelled, S.extracting)


def test_extraction_without_entities_completes_directly():
    assert can_transition(S.extracting, S.completed)


def test_string_values_are_accepted():
    assert can_transition("pending", "searching")
    assert is_terminal("cancelled")


def test_building_refuses_screening_edits():
    assert S.building not in SCREENING_EDITABLE
    assert S.analyzing not in SCREENING_EDITABLE
    assert S.cancelled not in SCREENING_EDITABLE
    assert S.awaiting_screening in ANALYZABLE
    assert S.extracting not in ANALYZABLE


def test_extraction_progress_spans_twenty_to_eighty():
    assert extraction_progress(0, 4) == 20.0
    assert extraction_progress(2, 4) == 50.0
    assert extraction_progress(4, 4) == 80.0
    assert extraction_progress(9, 4) == 80.0
    assert extraction_progress(0, 0) == 80.0
