"""
Tests for the two-pass auto-match engine.

Verifies:
- Pass 1 matches within the date window, pass 2 ignores the window
- Amounts match within the tolerance, sign included
- Matching is one-to-one and the closest date wins
- Lines are processed in date order
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_engines.matching import (
    DEFAULT_TOLERANCE,
    DEFAULT_WINDOW_DAYS,
    MatchableLine,
    MatchCandidate,
    auto_match,
)
from ledger_kernel.domain.values import MatchConfidence


def line(day: int, amount: str) -> MatchableLine:
    return MatchableLine(uuid4(), date(2025, 1, day), Decimal(amount))


def candidate(day: int, amount: str) -> MatchCandidate:
    return MatchCandidate(uuid4(), date(2025, 1, day), Decimal(amount))


class TestAutoMatch:
    def test_defaults(self):
        assert DEFAULT_WINDOW_DAYS == 3
        assert DEFAULT_TOLERANCE == Decimal("0.005")

    def test_exact_match_in_window(self):
        ln, cand = line(10, "2500.00"), candidate(11, "2500.00")
        [proposal] = auto_match(lines=[ln], candidates=[cand])
        assert proposal.line_id == ln.line_id
        assert proposal.entry_id == cand.entry_id
        assert proposal.match_pass == 1
        assert proposal.day_distance == 1
        assert proposal.confidence == MatchConfidence.AUTO

    def test_sign_must_agree(self):
        assert auto_match(lines=[line(10, "-80.00")], candidates=[candidate(10, "80.00")]) == []

    def test_amount_outside_tolerance(self):
        assert auto_match(lines=[line(10, "100.00")], candidates=[candidate(10, "100.01")]) == []

    def test_custom_tolerance(self):
        proposals = auto_match(
            lines=[line(10, "100.00")],
            candidates=[candidate(10, "100.01")],
            tolerance=Decimal("0.01"),
        )
        assert len(proposals) == 1

    def test_second_pass_ignores_window(self):
        ln, cand = line(2, "75.00"), candidate(20, "75.00")
        [proposal] = auto_match(lines=[ln], candidates=[cand])
        assert proposal.match_pass == 2
        assert proposal.day_distance == 18

    def test_window_boundary_is_inclusive(self):
        [proposal] = auto_match(lines=[line(10, "5.00")], candidates=[candidate(13, "5.00")])
        assert proposal.match_pass == 1

    def test_closest_date_wins(self):
        ln = line(10, "50.00")
        far, near = candidate(8, "50.00"), candidate(11, "50.00")
        [proposal] = auto_match(lines=[ln], candidates=[far, near])
        assert proposal.entry_id == near.entry_id

    def test_one_to_one(self):
        lines = [line(5, "1500.00"), line(6, "1500.00")]
        only = candidate(5, "1500.00")
        proposals = auto_match(lines=lines, candidates=[only])
        assert len(proposals) == 1
        assert proposals[0].line_id == lines[0].line_id

    def test_dated_match_is_not_stolen_by_earlier_line_in_second_pass(self):
        early = line(1, "900.00")
        late = line(20, "900.00")
        cand_late = candidate(21, "900.00")
        cand_early = candidate(2, "900.00")
        proposals = {p.line_id: p for p in auto_match(
            lines=[late, early], candidates=[cand_late, cand_early]
        )}
        assert proposals[early.line_id].entry_id == cand_early.entry_id
        assert proposals[late.line_id].entry_id == cand_late.entry_id
        assert {p.match_pass for p in proposals.values()} == {1}

    def test_first_pass_precedes_second_pass(self):
        # The 5th-of-month line has only an out-of-window match; the 20th
        # has the same entry inside its window and must get it.
        out_of_window = line(5, "300.00")
        in_window = line(20, "300.00")
        cand = candidate(21, "300.00")
        [proposal] = auto_match(lines=[out_of_window, in_window], candidates=[cand])
        assert proposal.line_id == in_window.line_id

    def test_no_candidates(self):
        assert auto_match(lines=[line(1, "1.00")], candidates=[]) == []

    @pytest.mark.parametrize("kwargs", [{"window_days": -1}, {"tolerance": Decimal("-0.01")}])
    def test_negative_parameters(self, kwargs):
        with pytest.raises(ValueError):
            auto_match(lines=[], candidates=[], **kwargs)

    def test_fingerprint_depends_on_tuning(self, captured_logs):
        auto_match(lines=[], candidates=[], window_days=3)
        auto_match(lines=[], candidates=[], window_days=4)
        fingerprints = [
            r["input_fingerprint"] for r in captured_logs()
            if r["message"] == "engine_trace" and r["engine_name"] == "matching"
        ]
        assert len(fingerprints) == 2
        assert fingerprints[0] != fingerprints[1]
