"""
Reply Quality Gate
==================

Structural checks on a generated reply, run against the compliance-sanitized
text. A reply can be policy-compliant yet structurally wrong (missing
signature) or the other way round, so both checks must pass.

A/B reply variants are checked one by one; which of the two becomes the
draft is a stable function of the review ID.
"""

import hashlib
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .compliance_guard import ComplianceConfig, run_compliance_guard
from .models import ComplianceTarget, ComplianceViolation, Severity

FALLBACK_FIRST_NAME = "Valued Patient"
_ANONYMOUS_NAMES = {"guest", "unknown", "anonymous"}
VARIANT_KEYS = ("A", "B")


@dataclass(frozen=True)
class ReplyContract:
    """What a publishable reply to one specific review must look like."""
    reviewer_first_name: str
    business_name: str
    signature: str
    min_words: int
    max_words: int
    compliance: ComplianceConfig = field(default_factory=ComplianceConfig)
    review_comment: Optional[str] = None


@dataclass(frozen=True)
class ReplyPolicy:
    """
    Business-wide reply rules.

    Built once from settings and passed explicitly into the reconciler;
    `contract_for()` specializes it for a single review.
    """
    business_name: str
    signature: str
    min_words: int = 25
    max_words: int = 150
    compliance: ComplianceConfig = field(default_factory=ComplianceConfig)
    approval_risk_patterns: Tuple[str, ...] = ("hipaa", "qc failed")

    def contract_for(self, reviewer_first_name: str, review_comment: Optional[str]) -> ReplyContract:
        return ReplyContract(
            reviewer_first_name=reviewer_first_name,
            business_name=self.business_name,
            signature=self.signature,
            min_words=self.min_words,
            max_words=self.max_words,
            compliance=self.compliance,
            review_comment=review_comment,
        )


@dataclass(frozen=True)
class ReplyQualityResult:
    ok: bool
    issues: List[str]
    blocked: bool
    violations: List[ComplianceViolation]
    sanitized_text: str
    word_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "blocked": self.blocked,
            "issues": list(self.issues),
            "word_count": self.word_count,
            "violations": [v.to_dict() for v in self.violations],
        }


def reviewer_first_name(author_name: Optional[str]) -> str:
    """First word of the reviewer's display name, or a neutral fallback."""
    name = (author_name or "").strip()
    if not name or name.lower() in _ANONYMOUS_NAMES:
        return FALLBACK_FIRST_NAME
    return name.split()[0]


def count_words(text: str) -> int:
    return len([w for w in re.split(r"\s+", text or "") if w.strip()])


def check_reply_quality(candidate: str, contract: ReplyContract) -> ReplyQualityResult:
    """Run the compliance guard, then the structural checks on its output."""
    compliance = run_compliance_guard(
        ComplianceTarget.REVIEW_REPLY,
        str(candidate or "").strip(),
        config=contract.compliance,
        review_comment=contract.review_comment,
    )

    sanitized = compliance.sanitized_text.strip()
    word_count = count_words(sanitized)
    issues: List[str] = []

    greeting = f"Dear {contract.reviewer_first_name},"
    if not sanitized.startswith(greeting):
        issues.append(f'Greeting must start with "{greeting}"')

    if "[" in sanitized or "]" in sanitized:
        issues.append("Reply contains bracketed placeholder(s)")

    if word_count < contract.min_words:
        issues.append(f"Word count {word_count} is below minimum {contract.min_words}")
    if word_count > contract.max_words:
        issues.append(f"Word count {word_count} exceeds maximum {contract.max_words}")

    if contract.business_name.lower() not in sanitized.lower():
        issues.append(f'Business name "{contract.business_name}" not found')

    signature = (contract.signature or "").strip()
    if signature and not sanitized.lower().endswith(signature.lower()):
        issues.append(f'Reply does not end with the expected signature "{signature}"')

    if any(v.severity == Severity.HIGH for v in compliance.violations):
        issues.append("Compliance violations detected (high severity)")

    return ReplyQualityResult(
        ok=not issues and not compliance.blocked,
        issues=issues,
        blocked=compliance.blocked,
        violations=list(compliance.violations),
        sanitized_text=sanitized,
        word_count=word_count,
    )


def deterministic_variant(stable_id: Optional[str]) -> str:
    """A or B from the parity of the last hex digit of sha256(stable_id); A when blank."""
    key = (stable_id or "").strip()
    if not key:
        return "A"
    last = hashlib.sha256(key.encode("utf-8")).hexdigest()[-1]
    return "A" if int(last, 16) % 2 == 0 else "B"


def build_reply_variants(
    candidates: Any,
    contract: ReplyContract,
    stable_id: Optional[str],
    language_code: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """
    Check both candidate replies and record which one is selected.

    Returns None unless `candidates` holds non-empty "A" and "B" texts.
    Each variant keeps its sanitized text and its quality result:

        {"A": {"text": ..., "qc": {...}}, "B": {...}, "selected": "A", "language_code": "en"}
    """
    if not isinstance(candidates, dict):
        return None
    texts = {key: str(candidates.get(key) or "").strip() for key in VARIANT_KEYS}
    if not all(texts.values()):
        return None

    variants: Dict[str, Any] = {}
    for key in VARIANT_KEYS:
        quality = check_reply_quality(texts[key], contract)
        variants[key] = {"text": quality.sanitized_text, "qc": quality.to_dict()}
    variants["selected"] = deterministic_variant(stable_id)
    variants["language_code"] = language_code
    return variants
