"""
Review Analyzer - LLM-Based Review Analysis and Reply Drafting
===============================================================

ARCHITECTURAL DECISION:
- Uses the OpenRouter chat completions API (OpenAI-compatible) in JSON mode
- One call per review returns sentiment, urgency, topics, follow-ups,
  risk flags and a ready-to-post reply draft
- No business logic: the reconciler decides approval, the quality gate and
  compliance guard judge the draft
- Failures raise ReviewAnalyzerError so the caller can keep the previous
  analysis instead of overwriting it with guesses

EXTENSIBILITY:
- To use a different model: change LLM_MODEL
- To use a local LLM: implement ReviewAnalyzer with another client
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from ...domain.models import ReviewAnalysis, Sentiment, Urgency
from ...domain.reply_quality import reviewer_first_name
from ..config import LLMSettings, ReplySettings, get_settings

logger = logging.getLogger(__name__)


class ReviewAnalyzerError(Exception):
    """Base exception for review analysis errors."""
    pass


class ReviewAnalyzer(ABC):
    """
    Abstract base class for review analysis backends.
    Implement this interface to add new LLM providers.
    """

    @abstractmethod
    def analyze(
        self,
        author_name: str,
        rating: int,
        comment: Optional[str],
        created_at: Optional[datetime],
    ) -> ReviewAnalysis:
        """Analyze one review. Raises ReviewAnalyzerError on failure."""
        ...


class OpenRouterReviewAnalyzer(ReviewAnalyzer):
    """
    Review analysis through OpenRouter.

    USAGE:
        analyzer = OpenRouterReviewAnalyzer()
        analysis = analyzer.analyze("Jane Doe", 5, "Lovely staff!", created_at)
        print(analysis.sentiment)  # Sentiment.POSITIVE
    """

    PROMPT_TEMPLATE = """You write Google review replies for {business_name}.

Rules:
- Mention "{business_name}" naturally in the reply.
- Never confirm that someone is a patient.
- Never mention procedures unless the reviewer did.
- No personal health information, dates, phone numbers or emails.
- Keep between {min_words} and {max_words} words.
- If rating <= 3 or sentiment is negative, invite them to contact the office and never argue.
- If there is no comment text, write a short thank-you.
- Start with "Dear {first_name}," and end with:
{signature}
- Never use bracketed placeholders.

Return JSON with:
- sentiment: positive|neutral|negative
- urgency: low|medium|high
- topics: array of 2-6 short tags
- suggested_actions: array of short internal follow-ups
- risk_flags: array (e.g. "HIPAA risk", "refund request", "angry language")
- language_code: ISO 639-1 code of the review language
- reply_draft: the ready-to-post reply
- reply_variants: object with two alternative replies following the same rules,
  "A" slightly more concise and straightforward, "B" slightly more empathetic
  with one extra sentence of reassurance

Review details:
- Author: {author_name}
- Rating: {rating}
- Comment: {comment}
- Created: {created_at}

Respond with JSON only."""

    _FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

    def __init__(
        self,
        llm_settings: Optional[LLMSettings] = None,
        reply_settings: Optional[ReplySettings] = None,
    ):
        """Initialize analyzer with settings."""
        settings = get_settings()
        llm = llm_settings or settings.llm
        self._reply = reply_settings or settings.reply
        self._api_key = llm.api_key
        self._api_url = llm.api_url
        self._model = llm.model
        self._temperature = llm.temperature
        self._timeout = llm.timeout_seconds

        if not self._api_key:
            logger.warning("No OPENROUTER_API_KEY set. Review analysis will fail.")

    def analyze(
        self,
        author_name: str,
        rating: int,
        comment: Optional[str],
        created_at: Optional[datetime],
    ) -> ReviewAnalysis:
        if not self._api_key:
            raise ReviewAnalyzerError("OPENROUTER_API_KEY is not configured")

        prompt = self.PROMPT_TEMPLATE.format(
            business_name=self._reply.business_name or "our office",
            min_words=self._reply.min_words,
            max_words=self._reply.max_words,
            first_name=reviewer_first_name(author_name),
            signature=self._reply.signature or "Warm regards",
            author_name=author_name or "Unknown",
            rating=rating,
            comment=comment or "(no comment)",
            created_at=created_at.isoformat() if created_at else "unknown",
        )

        content = self._call_llm(prompt)
        return self._parse_analysis(content)

    def _call_llm(self, prompt: str) -> str:
        """POST the prompt and return the message content."""
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": "https://github.com/replyguard",  # Required by OpenRouter
        }

        payload = {
            "model": self._model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self._temperature,
            "response_format": {"type": "json_object"},
        }

        try:
            response = requests.post(
                self._api_url,
                headers=headers,
                json=payload,
                timeout=self._timeout
            )
            response.raise_for_status()
            data = response.json()

        except requests.Timeout as e:
            raise ReviewAnalyzerError("LLM API timeout") from e

        except requests.RequestException as e:
            raise ReviewAnalyzerError(f"LLM API error: {e}") from e

        except ValueError as e:
            raise ReviewAnalyzerError("LLM API returned a non-JSON body") from e

        content = self._extract_response_content(data)
        if not content:
            raise ReviewAnalyzerError("LLM API returned an empty completion")
        return content

    def _extract_response_content(self, data: dict) -> str:
        """Extract text content from API response."""
        try:
            choices = data.get("choices", [])
            if choices:
                message = choices[0].get("message", {})
                return (message.get("content") or "").strip()
        except (AttributeError, IndexError, TypeError):
            pass
        return ""

    def _parse_analysis(self, content: str) -> ReviewAnalysis:
        """Parse the model's JSON answer into a ReviewAnalysis."""
        text = self._FENCE_RE.sub("", content.strip())
        try:
            parsed = json.loads(text)
        except ValueError as e:
            raise ReviewAnalyzerError(f"Failed to parse model response: {text[:200]}") from e

        if not isinstance(parsed, dict):
            raise ReviewAnalyzerError("Model response is not a JSON object")

        variants = self._parse_variants(parsed.get("reply_variants"))
        reply_draft = str(parsed.get("reply_draft") or "").strip()
        if not reply_draft and variants:
            reply_draft = variants["A"]
        if not reply_draft:
            raise ReviewAnalyzerError("Model response has no reply_draft")

        language = str(parsed.get("language_code") or parsed.get("languageCode") or "en").strip()

        analysis = ReviewAnalysis(
            sentiment=self._parse_sentiment(parsed.get("sentiment")),
            urgency=self._parse_urgency(parsed.get("urgency")),
            topics=self._string_list(parsed.get("topics")),
            suggested_actions=self._string_list(parsed.get("suggested_actions")),
            risk_flags=self._string_list(parsed.get("risk_flags")),
            reply_draft=reply_draft,
            reply_language_code=language or "en",
            reply_variants=variants,
        )
        logger.debug(f"LLM analysis: {analysis.sentiment.value}/{analysis.urgency.value}")
        return analysis

    @staticmethod
    def _parse_sentiment(value: Any) -> Sentiment:
        try:
            return Sentiment(str(value or "").strip().lower())
        except ValueError:
            logger.warning(f"Unexpected LLM sentiment: {value!r}, defaulting to neutral")
            return Sentiment.NEUTRAL

    @staticmethod
    def _parse_urgency(value: Any) -> Urgency:
        try:
            return Urgency(str(value or "").strip().lower())
        except ValueError:
            logger.warning(f"Unexpected LLM urgency: {value!r}, defaulting to medium")
            return Urgency.MEDIUM

    @staticmethod
    def _string_list(value: Any) -> List[str]:
        if not isinstance(value, list):
            return []
        return [str(item).strip() for item in value if str(item).strip()]

    @staticmethod
    def _parse_variants(value: Any) -> Optional[Dict[str, str]]:
        """Both A and B candidate texts, or None."""
        if not isinstance(value, dict):
            return None
        texts = {key: str(value.get(key) or "").strip() for key in ("A", "B")}
        if not all(texts.values()):
            logger.debug("Ignoring incomplete reply_variants in LLM response")
            return None
        return texts
