"""Tests for the tree invariant checker."""

from tests.unit.fakes import WORKSPACE, make_entity, make_note
from workspace_tree.core.integrity import check_integrity


def test_clean_workspace_passes() -> None:
    report = check_integrity(WORKSPACE)
    assert report.ok
    assert report.entity_count == 5


def test_reports_gaps_and_duplicate_positions() -> None:
    report = check_integrity(
        [
            make_entity(1, "a", None, 0),
            make_entity(2, "b", None, 2),
            make_entity(3, "c", 1, 0),
            make_entity(4, "d", 1, 0),
        ]
    )
    assert report.violations == (
        "positions under root are [0, 2], expected [0, 1]",
        "positions under parent 1 are [0, 0], expected [0, 1]",
    )


def test_reports_missing_parent_and_note_parent() -> None:
    report = check_integrity(
        [
            make_note(1, "n", None, 0),
            make_entity(2, "under note", 1, 0),
            make_entity(3, "lost", 42, 0),
        ]
    )
    assert "entity 2 is placed under note 1" in report.violations
    assert "entity 3 points at missing parent 42" in report.violations


def test_reports_cycles_and_duplicate_ids() -> None:
    report = check_integrity(
        [
            make_entity(1, "x", 2, 0),
            make_entity(2, "y", 1, 0),
            make_entity(3, "z", None, 0),
            make_entity(3, "z again", None, 0),
        ]
    )
    assert "duplicate id 3" in report.violations
    assert "entity 1 is its own ancestor" in report.violations
    assert "entity 2 is its own ancestor" in report.violations
    assert report.entity_count == 3
