"""
Compliance Guard - Privacy and Policy Screening for Outbound Text
==================================================================

Every reply or local post runs through `run_compliance_guard()` before it is
allowed to leave the system.

ARCHITECTURAL DECISION:
- Pure function: no I/O, no global settings. Banned phrases and the business
  contact allow-list arrive in an explicit `ComplianceConfig`.
- All detectors run and their findings accumulate; sanitization needs to
  know about every category that was found.
- Only high-confidence PHI markers (DOB, SSN, MRN) block publication. Every
  other finding is redacted or rewritten so the text stays usable.

SANITIZATION ORDER:
1. banned phrases -> [redacted]
2. personal emails/phones, then date-like tokens -> [redacted]
3. patient-confirmation templates rewritten, privacy sentence appended
4. (replies only) sentences naming unconfirmed procedures dropped
5. banned phrases redacted again over the text added by steps 3 and 4

Existing [redacted] markers are never matched again, so running the guard
over its own output returns the same text.
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from .models import ComplianceTarget, ComplianceViolation, Severity, ViolationCode

logger = logging.getLogger(__name__)

REDACTION_MARKER = "[redacted]"

PRIVACY_SENTENCE = (
    "For your privacy, we can't discuss details here. "
    "Please contact our office directly so we can help."
)

# (pattern, example shown in the violation message, privacy-safe replacement)
PATIENT_CONFIRMATION_PATTERNS = [
    (re.compile(r"\bas your (?:dentist|provider|doctor|hygienist)\b", re.IGNORECASE),
     "as your dentist", "at our office"),
    (re.compile(r"\b(?:as|being) (?:a )?patient of (?:ours|mine|this office)\b", re.IGNORECASE),
     "patient of ours", "as a member of our community"),
    (re.compile(r"\byour (?:appointment|visit|treatment|procedure)\b", re.IGNORECASE),
     "your appointment", "your experience"),
    (re.compile(r"\bwe(?:'|’)?(?:ve| have) been (?:treating|seeing) you\b", re.IGNORECASE),
     "we've been seeing you", "we've enjoyed welcoming you"),
    (re.compile(r"\bthank you for choosing us for your care\b", re.IGNORECASE),
     "choosing us for your care", "thank you for your kind words"),
]

HIGH_CONFIDENCE_PHI_PATTERNS = [
    (re.compile(r"\b(?:DOB|date of birth)\b", re.IGNORECASE),
     "Mentions DOB/date of birth."),
    (re.compile(r"\bSSN\b|\bsocial security\b|\b\d{3}-\d{2}-\d{4}\b", re.IGNORECASE),
     "Mentions SSN/social security."),
    (re.compile(r"\bMRN\b|\bmedical record\b", re.IGNORECASE),
     "Mentions medical record number (MRN)."),
]

DATE_RE = re.compile(r"\b\d{1,2}[/-]\d{1,2}[/-]\d{2,4}\b")
EMAIL_RE = re.compile(r"\b[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}\b", re.IGNORECASE)
PHONE_RE = re.compile(
    r"(?<!\w)(?:\+?1[\s.-]?)?(?:\(\s*\d{3}\s*\)|\d{3})[\s.-]?\d{3}[\s.-]?\d{4}(?!\w)"
)
SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")

PROCEDURE_KEYWORDS = [
    "implant",
    "implants",
    "invisalign",
    "veneer",
    "veneers",
    "root canal",
    "extraction",
    "wisdom teeth",
    "crown",
    "crowns",
    "filling",
    "fillings",
    "braces",
    "gum disease",
    "deep cleaning",
    "whitening",
    "teeth whitening",
]


@dataclass(frozen=True)
class ComplianceConfig:
    """Business-specific inputs to the guard."""
    banned_phrases: Tuple[str, ...] = ()
    allowed_business_email: Optional[str] = None
    allowed_business_phone: Optional[str] = None


@dataclass(frozen=True)
class ComplianceResult:
    blocked: bool
    sanitized_text: str
    violations: Tuple[ComplianceViolation, ...]

    @property
    def codes(self) -> List[str]:
        """Violation codes in detection order, without duplicates."""
        seen: List[str] = []
        for violation in self.violations:
            if violation.code.value not in seen:
                seen.append(violation.code.value)
        return seen

    @property
    def blocking_violations(self) -> List[ComplianceViolation]:
        return [v for v in self.violations if v.code == ViolationCode.HIGH_CONFIDENCE_PHI]

    def has(self, code: ViolationCode) -> bool:
        return any(v.code == code for v in self.violations)


# ── Detectors ─────────────────────────────────────────────────────

def _find_patient_confirmation(text: str) -> List[ComplianceViolation]:
    violations = []
    for pattern, example, _ in PATIENT_CONFIRMATION_PATTERNS:
        if pattern.search(text):
            violations.append(ComplianceViolation(
                code=ViolationCode.NEVER_CONFIRM_PATIENT,
                severity=Severity.HIGH,
                message=f'Potential patient-confirmation language detected (e.g., "{example}").',
            ))
    return violations


def _find_banned_phrases(text: str, banned_phrases: Iterable[str]) -> List[ComplianceViolation]:
    # Earlier redactions are never matched again
    segments = [segment.lower() for segment in text.split(REDACTION_MARKER)]
    violations = []
    for raw in banned_phrases:
        phrase = str(raw or "").strip()
        if phrase and any(phrase.lower() in segment for segment in segments):
            violations.append(ComplianceViolation(
                code=ViolationCode.BANNED_PHRASE_MATCH,
                severity=Severity.HIGH,
                message=f'Matched banned phrase: "{phrase}"',
                meta={"phrase": phrase},
            ))
    return violations


def _phone_digits(value: str) -> str:
    digits = re.sub(r"\D", "", value or "")
    # Treat +1 555... and 555... as the same North American number
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    return digits


def _is_allowed_email(candidate: str, config: ComplianceConfig) -> bool:
    allowed = (config.allowed_business_email or "").strip().lower()
    return bool(allowed) and candidate.lower() == allowed


def _is_allowed_phone(candidate: str, config: ComplianceConfig) -> bool:
    allowed = _phone_digits(config.allowed_business_phone or "")
    return bool(allowed) and _phone_digits(candidate) == allowed


def _find_phi(text: str, config: ComplianceConfig) -> List[ComplianceViolation]:
    violations = []

    for pattern, message in HIGH_CONFIDENCE_PHI_PATTERNS:
        if pattern.search(text):
            violations.append(ComplianceViolation(
                code=ViolationCode.HIGH_CONFIDENCE_PHI,
                severity=Severity.HIGH,
                message=message,
            ))

    dates = DATE_RE.findall(text)
    if dates:
        violations.append(ComplianceViolation(
            code=ViolationCode.POSSIBLE_PHI,
            severity=Severity.MEDIUM,
            message="Contains a date-like string that could reveal appointment timing.",
            meta={"kind": "date", "count": len(dates)},
        ))

    emails = [m for m in EMAIL_RE.findall(text) if not _is_allowed_email(m, config)]
    if emails:
        violations.append(ComplianceViolation(
            code=ViolationCode.POSSIBLE_PHI,
            severity=Severity.MEDIUM,
            message="Contains an email address that may be personal contact info.",
            meta={"kind": "email", "count": len(emails)},
        ))

    phones = [m.group(0) for m in PHONE_RE.finditer(text) if not _is_allowed_phone(m.group(0), config)]
    if phones:
        violations.append(ComplianceViolation(
            code=ViolationCode.POSSIBLE_PHI,
            severity=Severity.MEDIUM,
            message="Contains a phone number that may be personal contact info.",
            meta={"kind": "phone", "count": len(phones)},
        ))

    return violations


def _keyword_pattern(keyword: str) -> "re.Pattern[str]":
    return re.compile(rf"\b{re.escape(keyword)}\b", re.IGNORECASE)


def _find_procedure_mentions(reply: str, review_comment: Optional[str]) -> List[ComplianceViolation]:
    comment = review_comment or ""
    violations = []
    for keyword in PROCEDURE_KEYWORDS:
        pattern = _keyword_pattern(keyword)
        if pattern.search(reply) and not pattern.search(comment):
            violations.append(ComplianceViolation(
                code=ViolationCode.PROCEDURE_MENTION_NOT_IN_REVIEW,
                severity=Severity.MEDIUM,
                message=f'Reply mentions "{keyword}" which does not appear in the review comment.',
                meta={"keyword": keyword},
            ))
    return violations


# ── Sanitization ──────────────────────────────────────────────────

def _match_case(original: str, replacement: str) -> str:
    if original[:1].isupper():
        return replacement[:1].upper() + replacement[1:]
    return replacement


def _redact_banned(text: str, banned_phrases: Iterable[str]) -> str:
    """Replace banned phrases with the marker, leaving existing markers intact."""
    out = text
    for raw in banned_phrases:
        phrase = str(raw or "").strip()
        if not phrase:
            continue
        pattern = re.compile(re.escape(phrase), re.IGNORECASE)
        out = REDACTION_MARKER.join(pattern.sub(REDACTION_MARKER, part) for part in out.split(REDACTION_MARKER))
    return out


def _ensure_privacy_sentence(text: str) -> str:
    if "for your privacy" in text.lower():
        return text
    body = text.strip()
    if not body:
        return PRIVACY_SENTENCE
    # The sentence splitter needs terminal punctuation before the privacy sentence
    if body[-1] not in ".!?":
        body += "."
    return f"{body}\n\n{PRIVACY_SENTENCE}"


def _remove_sentences_with(text: str, keywords: List[str]) -> str:
    patterns = [_keyword_pattern(k) for k in keywords]
    sentences = SENTENCE_SPLIT_RE.split(text.strip())
    kept = [s for s in sentences if not any(p.search(s) for p in patterns)]
    return " ".join(kept).strip()


def _sanitize(
    target: ComplianceTarget,
    text: str,
    config: ComplianceConfig,
    violations: List[ComplianceViolation],
) -> str:
    out = text

    if any(v.code == ViolationCode.BANNED_PHRASE_MATCH for v in violations):
        out = _redact_banned(out, config.banned_phrases)

    out = EMAIL_RE.sub(
        lambda m: m.group(0) if _is_allowed_email(m.group(0), config) else REDACTION_MARKER, out
    )
    out = PHONE_RE.sub(
        lambda m: m.group(0) if _is_allowed_phone(m.group(0), config) else REDACTION_MARKER, out
    )
    out = DATE_RE.sub(REDACTION_MARKER, out)

    if any(v.code == ViolationCode.NEVER_CONFIRM_PATIENT for v in violations):
        for pattern, _, replacement in PATIENT_CONFIRMATION_PATTERNS:
            out = pattern.sub(lambda m, r=replacement: _match_case(m.group(0), r), out)
        out = _ensure_privacy_sentence(out)

    if target == ComplianceTarget.REVIEW_REPLY:
        keywords = [
            v.meta["keyword"] for v in violations
            if v.code == ViolationCode.PROCEDURE_MENTION_NOT_IN_REVIEW
        ]
        if keywords:
            out = _remove_sentences_with(out, keywords)
            out = _ensure_privacy_sentence(out)

    # Rewrites and the privacy sentence may themselves contain a banned phrase
    out = _redact_banned(out, config.banned_phrases)

    return out.strip()


def run_compliance_guard(
    target: ComplianceTarget,
    text: str,
    config: Optional[ComplianceConfig] = None,
    review_comment: Optional[str] = None,
) -> ComplianceResult:
    """
    Screen and sanitize text bound for publication.

    Args:
        target: Reply to a review, or a local (marketing) post.
        text: Candidate text.
        config: Banned phrases and allow-listed business contact details.
        review_comment: The review being answered; procedure keywords in a
            reply must already appear here.

    Returns:
        ComplianceResult. `blocked` is True only for high-confidence PHI.
    """
    config = config or ComplianceConfig()
    text = str(text or "")

    violations: List[ComplianceViolation] = []
    violations.extend(_find_patient_confirmation(text))
    violations.extend(_find_banned_phrases(text, config.banned_phrases))
    violations.extend(_find_phi(text, config))
    if target == ComplianceTarget.REVIEW_REPLY:
        violations.extend(_find_procedure_mentions(text, review_comment))

    sanitized = _sanitize(target, text, config, violations)
    blocked = any(v.code == ViolationCode.HIGH_CONFIDENCE_PHI for v in violations)

    if violations:
        logger.debug(
            f"Compliance guard ({target.value}): {len(violations)} violation(s), blocked={blocked}"
        )

    return ComplianceResult(blocked=blocked, sanitized_text=sanitized, violations=tuple(violations))
