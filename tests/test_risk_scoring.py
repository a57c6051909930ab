"""
Tests for the weighted rule engine.
"""

from dataclasses import dataclass

import pytest

from arithmos_x402.services.risk_scoring import (
    RiskRule,
    Severity,
    ThreatLevel,
    cap_score,
    classify,
    describe_hit,
    evaluate,
)


@dataclass(frozen=True)
class Signals:
    a: bool = False
    b: bool = False
    c: bool = False


RULES = (
    RiskRule("rule_a", lambda s: s.a, 30, "A matched", Severity.HIGH),
    RiskRule("rule_b", lambda s: s.b, 50, "B matched", Severity.CRITICAL),
    RiskRule("rule_c", lambda s: s.c, 40, "C matched", Severity.MEDIUM),
)


class TestClassify:

    @pytest.mark.parametrize("score,level", [
        (0, ThreatLevel.NONE),
        (19, ThreatLevel.NONE),
        (20, ThreatLevel.LOW),
        (39, ThreatLevel.LOW),
        (40, ThreatLevel.MEDIUM),
        (59, ThreatLevel.MEDIUM),
        (60, ThreatLevel.HIGH),
        (79, ThreatLevel.HIGH),
        (80, ThreatLevel.CRITICAL),
        (100, ThreatLevel.CRITICAL),
    ])
    def test_threshold_boundaries(self, score, level):
        assert classify(score) is level

    def test_cap_score(self):
        assert cap_score(-15) == 0
        assert cap_score(55) == 55
        assert cap_score(170) == 100


class TestEvaluate:

    def test_no_rules_match(self):
        result = evaluate(RULES, Signals())
        assert result.score == 0
        assert result.triggered == ()
        assert result.threat_level is ThreatLevel.NONE
        assert result.safe is True

    def test_triggered_matches_exactly_the_true_predicates(self):
        result = evaluate(RULES, Signals(a=True, c=True))
        assert result.triggered == ("rule_a", "rule_c")
        assert result.reasons == ("A matched", "C matched")
        assert result.raw_points == 70
        assert result.score == 70

    def test_score_is_capped_but_raw_points_kept(self):
        result = evaluate(RULES, Signals(a=True, b=True, c=True))
        assert result.raw_points == 120
        assert result.score == 100
        assert result.threat_level is ThreatLevel.CRITICAL

    def test_deterministic(self):
        signals = Signals(a=True, b=True)
        assert evaluate(RULES, signals) == evaluate(RULES, signals)

    def test_hard_fail_on_single_heavy_rule(self):
        result = evaluate(RULES, Signals(b=True), hard_fail_points=50)
        assert result.score == 50
        assert result.safe is False

    def test_hard_fail_ignores_lighter_rules(self):
        result = evaluate(RULES, Signals(a=True, c=True), hard_fail_points=50)
        assert result.score == 70
        assert result.safe is True

    def test_unsafe_score(self):
        assert evaluate(RULES, Signals(c=True), unsafe_score=40).safe is False
        assert evaluate(RULES, Signals(a=True), unsafe_score=40).safe is True

    def test_base_and_negative_points(self):
        rules = (RiskRule("penalty", lambda s: s.a, -20, "Penalty"),)
        result = evaluate(rules, Signals(a=True), base=100)
        assert result.score == 80

        result = evaluate(rules, Signals(a=True), base=10)
        assert result.raw_points == -10
        assert result.score == 0

    def test_to_dict(self):
        data = evaluate(RULES, Signals(a=True)).to_dict()
        assert data["triggered"] == ["rule_a"]
        assert data["threat_level"] == "LOW"
        assert data["safe"] is True


def test_describe_hit():
    assert describe_hit(RULES[1]) == "rule_b: B matched (+50 points)"
    penalty = RiskRule("penalty", lambda s: True, -5, "Penalty")
    assert describe_hit(penalty) == "penalty: Penalty (-5 points)"
