"""
Settings Module - Centralized Configuration Management
=======================================================

ARCHITECTURAL DECISION:
- All configuration is loaded from environment variables (no hardcoded secrets)
- Settings are immutable dataclasses for safety and clarity
- Single source of truth for all configurable values
- Domain code never reads settings directly: `ReplySettings.to_policy()`
  turns them into an explicit `ReplyPolicy` that is passed in

EXTENSIBILITY:
- To switch LLM provider: change LLM_API_URL / LLM_MODEL
- To add another review platform: add a settings group next to GoogleSettings
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import List, Tuple

from dotenv import load_dotenv

from ...domain.compliance_guard import ComplianceConfig
from ...domain.reply_quality import ReplyPolicy

# Load .env file if present (development convenience)
load_dotenv()


def _env_list(name: str, default: str = "") -> Tuple[str, ...]:
    """Comma-separated environment variable as a tuple of stripped values."""
    raw = os.getenv(name, default)
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


@dataclass(frozen=True)
class LLMSettings:
    """OpenRouter LLM settings for review analysis."""

    api_key: str = field(default_factory=lambda: os.getenv("OPENROUTER_API_KEY", ""))
    api_url: str = field(
        default_factory=lambda: os.getenv("LLM_API_URL", "https://openrouter.ai/api/v1/chat/completions")
    )
    model: str = field(
        default_factory=lambda: os.getenv("LLM_MODEL", "meta-llama/llama-3.3-70b-instruct:free")
    )

    # Deterministic output
    temperature: float = 0.0
    timeout_seconds: int = field(default_factory=lambda: _env_int("LLM_TIMEOUT_SECONDS", 30))


@dataclass(frozen=True)
class GoogleSettings:
    """Google Business Profile API access."""

    access_token: str = field(default_factory=lambda: os.getenv("GOOGLE_ACCESS_TOKEN", ""))
    account_id: str = field(default_factory=lambda: os.getenv("GOOGLE_ACCOUNT_ID", ""))
    location_id: str = field(default_factory=lambda: os.getenv("GOOGLE_LOCATION_ID", ""))
    api_base_url: str = "https://mybusiness.googleapis.com/v4"
    timeout_seconds: int = field(default_factory=lambda: _env_int("GOOGLE_TIMEOUT_SECONDS", 20))
    page_size: int = 50


@dataclass(frozen=True)
class ReplySettings:
    """Reply contract and compliance inputs for the business."""

    business_name: str = field(default_factory=lambda: os.getenv("BUSINESS_NAME", ""))
    signature: str = field(default_factory=lambda: os.getenv("REPLY_SIGNATURE", ""))
    min_words: int = field(default_factory=lambda: _env_int("REPLY_MIN_WORDS", 25))
    max_words: int = field(default_factory=lambda: _env_int("REPLY_MAX_WORDS", 150))
    banned_phrases: Tuple[str, ...] = field(default_factory=lambda: _env_list("REPLY_BANNED_PHRASES"))
    business_email: str = field(default_factory=lambda: os.getenv("BUSINESS_EMAIL", ""))
    business_phone: str = field(default_factory=lambda: os.getenv("BUSINESS_PHONE", ""))

    # Risk-flag substrings that force human approval
    approval_risk_patterns: Tuple[str, ...] = field(
        default_factory=lambda: _env_list("REPLY_APPROVAL_RISK_PATTERNS", "hipaa,qc failed")
    )

    def compliance_config(self) -> ComplianceConfig:
        return ComplianceConfig(
            banned_phrases=self.banned_phrases,
            allowed_business_email=self.business_email or None,
            allowed_business_phone=self.business_phone or None,
        )

    def to_policy(self) -> ReplyPolicy:
        return ReplyPolicy(
            business_name=self.business_name,
            signature=self.signature,
            min_words=self.min_words,
            max_words=self.max_words,
            compliance=self.compliance_config(),
            approval_risk_patterns=self.approval_risk_patterns,
        )


@dataclass(frozen=True)
class PublishSettings:
    """Pacing for calls to the publishing API."""

    # SAFETY: the Business Profile API rejects bursts of replies
    rate_per_second: float = field(default_factory=lambda: _env_float("PUBLISH_RATE_PER_SECOND", 0.5))
    burst: int = field(default_factory=lambda: _env_int("PUBLISH_BURST", 1))
    auto_post_limit: int = field(default_factory=lambda: _env_int("AUTO_POST_LIMIT", 25))


@dataclass(frozen=True)
class TenantSettings:
    """Default tenant used by the batch runner and the API."""

    business_id: str = field(default_factory=lambda: os.getenv("DEFAULT_BUSINESS_ID", ""))
    location_id: str = field(default_factory=lambda: os.getenv("DEFAULT_LOCATION_ID", ""))


@dataclass(frozen=True)
class Settings:
    """
    Root settings container - Single source of truth for all configuration.

    Usage:
        from replyguard.infrastructure.config import get_settings
        settings = get_settings()
        policy = settings.reply.to_policy()
    """

    llm: LLMSettings = field(default_factory=LLMSettings)
    google: GoogleSettings = field(default_factory=GoogleSettings)
    reply: ReplySettings = field(default_factory=ReplySettings)
    publish: PublishSettings = field(default_factory=PublishSettings)
    tenant: TenantSettings = field(default_factory=TenantSettings)

    database_file: Path = field(
        default_factory=lambda: Path(os.getenv("DATABASE_FILE", "replyguard.db"))
    )

    def validate(self) -> List[str]:
        """
        Validate settings and return list of warnings/errors.
        Returns empty list if all settings are valid.
        """
        issues = []

        if not self.llm.api_key:
            issues.append(
                "WARNING: OPENROUTER_API_KEY not set. "
                "Review analysis will fail and reviews stay in PendingAnalysis."
            )

        if not self.google.access_token:
            issues.append("WARNING: GOOGLE_ACCESS_TOKEN not set. Reviews cannot be fetched or posted.")

        if not self.google.account_id or not self.google.location_id:
            issues.append("WARNING: GOOGLE_ACCOUNT_ID / GOOGLE_LOCATION_ID not set.")

        if not self.tenant.business_id or not self.tenant.location_id:
            issues.append("ERROR: DEFAULT_BUSINESS_ID and DEFAULT_LOCATION_ID are required for syncing.")

        if not self.reply.business_name:
            issues.append("WARNING: BUSINESS_NAME not set. Every reply will fail the quality gate.")

        if self.reply.min_words > self.reply.max_words:
            issues.append(
                f"ERROR: REPLY_MIN_WORDS ({self.reply.min_words}) exceeds "
                f"REPLY_MAX_WORDS ({self.reply.max_words})."
            )

        return issues


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get singleton Settings instance.
    Cached to ensure consistent settings throughout application lifecycle.
    """
    return Settings()
