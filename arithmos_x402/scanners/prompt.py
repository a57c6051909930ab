"""
Prompt injection detection.

Pure text analysis: every pattern is tested independently and the matches are
scored by the shared rule engine. No upstream is involved, so `run` cannot
degrade to the fallback for anything but programming errors.
"""

import re
from typing import Pattern
import structlog

from ..models import PromptTestRequest, PromptTestResult
from ..services.risk_scoring import RiskRule, Severity, ThreatLevel, describe_hit, evaluate
from .base import Scanner, now_unix

logger = structlog.get_logger(__name__)

# A rule this heavy on its own makes the prompt unsafe
DETECTION_POINTS = 70


def _pattern_rule(name: str, pattern: Pattern, points: int, reason: str, severity: Severity) -> RiskRule:
    return RiskRule(
        name=name,
        predicate=lambda text: pattern.search(text) is not None,
        points=points,
        reason=reason,
        severity=severity,
    )


PROMPT_RULES = (
    _pattern_rule(
        "ignore_instructions",
        re.compile(
            r"ignore\s+all\s+previous\s+instructions|ignore\s+the\s+above|disregard\s+previous|forget\s+previous",
            re.IGNORECASE,
        ),
        100,
        "Attempt to override previous instructions",
        Severity.CRITICAL,
    ),
    _pattern_rule(
        "jailbreak_attempt",
        re.compile(
            r"(?-i:\bDAN\b)|do\s+anything\s+now|jailbreak|developer\s+mode|sudo\s+mode|admin\s+terminal",
            re.IGNORECASE,
        ),
        100,
        "Known jailbreak pattern",
        Severity.CRITICAL,
    ),
    _pattern_rule(
        "function_redefinition",
        re.compile(r"redefine|change\s+the\s+meaning|now\s+means|is\s+now|from\s+now\s+on", re.IGNORECASE),
        80,
        "Attempt to redefine functions or terms",
        Severity.HIGH,
    ),
    _pattern_rule(
        "authority_claim",
        re.compile(r"system\s+admin|developer|creator|owner|override|i\s+am\s+the", re.IGNORECASE),
        70,
        "False authority claim",
        Severity.HIGH,
    ),
    _pattern_rule(
        "obfuscation",
        re.compile(r"ROT13|base64\s+decode|encode\s+this|\$\{|\{\{|\[\[", re.IGNORECASE),
        60,
        "Possible obfuscation attempt",
        Severity.MEDIUM,
    ),
    _pattern_rule(
        "token_manipulation",
        re.compile(r"transfer\s+all|send\s+all|approve\s+unlimited|drain\s+wallet", re.IGNORECASE),
        60,
        "Token/wallet manipulation keywords",
        Severity.MEDIUM,
    ),
    _pattern_rule(
        "social_engineering",
        re.compile(
            r"trust\s+me|i'm\s+from\s+support|internal\s+audit|authorized\s+personnel|emergency\s+access",
            re.IGNORECASE,
        ),
        50,
        "Social engineering attempt",
        Severity.MEDIUM,
    ),
    _pattern_rule(
        "unicode_obfuscation",
        re.compile("[\u200b-\u200d\u2060\ufeff]"),
        70,
        "Invisible Unicode characters detected",
        Severity.HIGH,
    ),
    _pattern_rule(
        "excessive_punctuation",
        re.compile(r"[!?]{4,}"),
        20,
        "Excessive punctuation (possible aggression)",
        Severity.LOW,
    ),
    _pattern_rule(
        "repetition_pattern",
        re.compile(r"\b(\w+)\b(?:\s+\1\b){2,}", re.IGNORECASE),
        15,
        "Word repetition pattern",
        Severity.LOW,
    ),
)


class PromptGuard(Scanner[PromptTestRequest]):
    name = "prompt"

    def test(self, prompt: str) -> PromptTestResult:
        score = evaluate(PROMPT_RULES, prompt, hard_fail_points=DETECTION_POINTS)

        detections = [describe_hit(rule) for rule in score.hits if rule.points >= DETECTION_POINTS]
        warnings = [describe_hit(rule) for rule in score.hits if rule.points < DETECTION_POINTS]

        return PromptTestResult(
            prompt=prompt,
            risk_score=score.score,
            threat_level=score.threat_level.value,
            safe=score.safe,
            triggered_rules=list(score.triggered),
            patterns=list(score.triggered),
            detections=detections,
            warnings=warnings,
            tested_at=now_unix(),
        )

    async def run(self, request: PromptTestRequest) -> PromptTestResult:
        result = self.test(request.prompt)
        logger.info(
            "prompt_tested",
            prompt_length=len(request.prompt),
            risk_score=result.risk_score,
            patterns=result.patterns
        )
        return result

    def fallback(self, request: PromptTestRequest) -> PromptTestResult:
        return PromptTestResult(
            prompt=request.prompt,
            risk_score=50,
            threat_level=ThreatLevel.MEDIUM.value,
            safe=False,
            data_source="fallback",
            warnings=["Prompt analysis unavailable - treat input as untrusted"],
            tested_at=now_unix(),
        )
