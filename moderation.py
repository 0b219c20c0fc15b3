"""
=============================================================================
MODERATION.PY — Content Moderation
=============================================================================
Every piece of user content goes through a classifier that answers the
same question: which policy categories does it hit, and how sure are we?

  TextClassifier   → keyword + regex heuristics (profanity, hate speech,
                     spam), plus an optional OpenAI analysis kept in the
                     details
  ImageClassifier  → placeholder: never finds anything
  VideoClassifier  → placeholder: never finds anything

ContentModerator picks the classifier for the content type and turns the
classification into a decision:

  no category                         → APPROVED
  HATE_SPEECH / VIOLENCE / ADULT      → REJECTED (severity CRITICAL)
  HIGH severity                       → REJECTED
  anything else with a category       → FLAGGED for human review

Real detectors can replace the placeholders without touching the
decision logic: they only need a `classify(content)` method.
"""

import enum
import json
import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional, Protocol

from openai import OpenAI

from config import settings
from errors import ModerationError, ValidationError

logger = logging.getLogger("sidequest.moderation")


class ModerationCategory(str, enum.Enum):
    PROFANITY = "PROFANITY"
    HATE_SPEECH = "HATE_SPEECH"
    HARASSMENT = "HARASSMENT"
    VIOLENCE = "VIOLENCE"
    ADULT_CONTENT = "ADULT_CONTENT"
    SPAM = "SPAM"


class ModerationSeverity(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class ModerationStatus(str, enum.Enum):
    APPROVED = "APPROVED"
    FLAGGED = "FLAGGED"
    REJECTED = "REJECTED"


class ModerationAction(str, enum.Enum):
    APPROVE = "APPROVE"
    FLAG = "FLAG"
    REJECT = "REJECT"


CONTENT_TYPES = ("TEXT", "IMAGE", "VIDEO")

# Categories that reject the content whatever the confidence
CRITICAL_CATEGORIES = (
    ModerationCategory.HATE_SPEECH,
    ModerationCategory.VIOLENCE,
    ModerationCategory.ADULT_CONTENT,
)

SEVERITY_ORDER = (
    ModerationSeverity.LOW,
    ModerationSeverity.MEDIUM,
    ModerationSeverity.HIGH,
    ModerationSeverity.CRITICAL,
)


@dataclass
class Classification:
    categories: list[ModerationCategory] = field(default_factory=list)
    confidence: float = 0.0
    severity: ModerationSeverity = ModerationSeverity.LOW
    details: dict = field(default_factory=dict)

    def escalate(self, severity: ModerationSeverity):
        """Raises the severity, never lowers it"""
        if SEVERITY_ORDER.index(severity) > SEVERITY_ORDER.index(self.severity):
            self.severity = severity


@dataclass
class ModerationResult:
    content_type: str
    status: ModerationStatus
    severity: ModerationSeverity
    categories: list[ModerationCategory]
    confidence: float
    action: ModerationAction
    reason: Optional[str] = None
    content_id: Optional[str] = None
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "contentId": self.content_id,
            "contentType": self.content_type,
            "status": self.status.value,
            "severity": self.severity.value,
            "categories": [c.value for c in self.categories],
            "confidence": round(self.confidence, 3),
            "action": self.action.value,
            "reason": self.reason,
            "details": self.details,
        }


class Classifier(Protocol):
    name: str

    def classify(self, content: str) -> Classification:
        ...


# =============================================================================
# ===================== TEXT HEURISTICS =======================================
# =============================================================================

PROFANITY_WORDS = ("damn", "hell", "crap", "stupid", "idiot", "moron", "jerk", "loser")

HATE_SPEECH_PATTERNS = (
    (re.compile(r"\b(you|they|those)\s+(are|is)\s+(stupid|dumb|idiot|moron|retard)\b", re.IGNORECASE),
     ModerationCategory.HARASSMENT, 0.7),
    (re.compile(r"\b(go|goes)\s+(die|kill|hurt)\s+(yourself|themselves)\b", re.IGNORECASE),
     ModerationCategory.VIOLENCE, 0.8),
    (re.compile(r"\b(hate|hates)\s+(you|them|those)\b", re.IGNORECASE),
     ModerationCategory.HATE_SPEECH, 0.6),
)

DISCRIMINATORY_TERMS = (
    ("retard", ModerationCategory.HARASSMENT, 0.8),
    ("idiot", ModerationCategory.HARASSMENT, 0.6),
    ("stupid", ModerationCategory.HARASSMENT, 0.5),
)

# (check, reason, weight): the weights add up to the spam confidence
SPAM_INDICATORS = (
    (lambda t: "http://" in t or "https://" in t, "Contains links", 0.2),
    (lambda t: "@" in t and ".com" in t, "Contains email addresses", 0.3),
    (lambda t: "$" in t and re.search(r"\d+", t) is not None, "Contains monetary references", 0.2),
    (lambda t: len(t) > 500, "Unusually long text", 0.1),
    (lambda t: re.search(r"[A-Z]{3,}", t) is not None, "Contains excessive capitalization", 0.2),
)

SPAM_THRESHOLD = 0.5

PROMOTIONAL_WORDS = {
    "buy", "sale", "discount", "offer", "deal", "promo", "free",
    "win", "prize", "click", "visit", "subscribe",
}
POSITIVE_WORDS = {"good", "great", "excellent", "amazing", "wonderful", "fantastic",
                  "love", "like", "enjoy", "happy", "pleased"}
NEGATIVE_WORDS = {"bad", "terrible", "awful", "hate", "dislike", "angry", "sad",
                  "disappointed", "frustrated", "annoyed"}
COMMON_TOPICS = ("technology", "sports", "food", "travel", "music", "art",
                 "education", "health", "business", "entertainment")

URL_PATTERN = re.compile(r"https?://\S+")


def _words(text: str) -> list[str]:
    return text.lower().split()


def profanity_severity(count: int, length: int) -> ModerationSeverity:
    """Profane words per 10 characters of text"""
    ratio = count / (length / 10) if length else 0
    if ratio > 0.3:
        return ModerationSeverity.CRITICAL
    if ratio > 0.2:
        return ModerationSeverity.HIGH
    if ratio > 0.1:
        return ModerationSeverity.MEDIUM
    return ModerationSeverity.LOW


def detect_profanity(text: str) -> dict:
    found = [w for w in _words(text) if any(p in w for p in PROFANITY_WORDS)]
    return {
        "hasProfanity": bool(found),
        "words": found,
        "severity": profanity_severity(len(found), len(text)),
    }


def detect_hate_speech(text: str) -> dict:
    lower = text.lower()
    categories = []
    confidence = 0.0

    for regex, category, weight in HATE_SPEECH_PATTERNS:
        if regex.search(lower):
            categories.append(category)
            confidence = max(confidence, weight)

    for term, category, weight in DISCRIMINATORY_TERMS:
        if term in lower:
            categories.append(category)
            confidence = max(confidence, weight)

    return {
        "isHateSpeech": bool(categories),
        # the same category can match twice (regex + term)
        "categories": list(dict.fromkeys(categories)),
        "confidence": confidence,
    }


def repetition_score(text: str) -> float:
    words = _words(text)
    if not words:
        return 0.0
    return Counter(words).most_common(1)[0][1] / len(words)


def promotional_score(text: str) -> float:
    words = _words(text)
    if not words:
        return 0.0
    return sum(1 for w in words if w in PROMOTIONAL_WORDS) / len(words)


def link_score(text: str) -> float:
    urls = URL_PATTERN.findall(text)
    if not urls:
        return 0.0
    if len(urls) > 3:
        return 1.0
    return len(urls) * 0.3


def detect_spam(text: str) -> dict:
    reasons = []
    confidence = 0.0

    for check, reason, weight in SPAM_INDICATORS:
        if check(text):
            reasons.append(reason)
            confidence += weight

    if repetition_score(text) > 0.7:
        reasons.append("Excessive repetition detected")
        confidence += 0.3
    if promotional_score(text) > 0.6:
        reasons.append("Promotional content detected")
        confidence += 0.2
    if link_score(text) > 0.5:
        reasons.append("Suspicious links detected")
        confidence += 0.4

    confidence = min(round(confidence, 3), 1.0)
    return {
        "isSpam": confidence >= SPAM_THRESHOLD,
        "confidence": confidence,
        "reasons": reasons,
    }


def sentiment(text: str) -> str:
    words = _words(text)
    positive = sum(1 for w in words if w in POSITIVE_WORDS)
    negative = sum(1 for w in words if w in NEGATIVE_WORDS)
    if positive > negative:
        return "positive"
    if negative > positive:
        return "negative"
    return "neutral"


def basic_text_analysis(text: str) -> dict:
    profanity = detect_profanity(text)
    hate = detect_hate_speech(text)
    spam = detect_spam(text)

    categories = []
    if profanity["hasProfanity"]:
        categories.append(ModerationCategory.PROFANITY.value)
    categories.extend(c.value for c in hate["categories"])
    if spam["isSpam"]:
        categories.append(ModerationCategory.SPAM.value)

    entities = [
        w for w in text.split()
        if len(w) > 2 and w.isalpha() and w.isascii() and w[0].isupper()
    ][:10]

    return {
        "provider": "basic",
        "sentiment": sentiment(text),
        "toxicity": max(0.8 if profanity["severity"] == ModerationSeverity.HIGH else 0.3, hate["confidence"]),
        "profanity": profanity["hasProfanity"],
        "categories": categories,
        "confidence": max(0.7 if profanity["hasProfanity"] else 0.3, hate["confidence"], spam["confidence"]),
        "entities": entities,
        "topics": [t for t in COMMON_TOPICS if t in text.lower()],
    }


# =============================================================================
# ===================== CLASSIFIERS ===========================================
# =============================================================================

ANALYSIS_PROMPT = """Analyze the following text for content moderation. Return a JSON object with:
- sentiment: "positive", "negative" or "neutral"
- toxicity: number between 0 and 1
- profanity: true or false
- categories: array of any of PROFANITY, HATE_SPEECH, HARASSMENT, VIOLENCE, ADULT_CONTENT, SPAM
- confidence: number between 0 and 1
- entities: array of named entities
- topics: array of topics
Answer with the JSON object only."""


class TextClassifier:
    name = "text"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        self.api_key = settings.openai_api_key if api_key is None else api_key
        self.model = model or settings.openai_model
        self._client = None

    @property
    def ai_configured(self) -> bool:
        return bool(self.api_key)

    def _ai_analysis(self, text: str) -> dict:
        if self._client is None:
            self._client = OpenAI(api_key=self.api_key, timeout=settings.openai_timeout, max_retries=0)
        response = self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": ANALYSIS_PROMPT},
                {"role": "user", "content": text},
            ],
            temperature=0.1,
            max_tokens=500,
        )
        content = response.choices[0].message.content or ""
        match = re.search(r"\{[\s\S]*\}", content)
        if not match:
            raise ModerationError("No JSON in moderation analysis")
        analysis = json.loads(match.group(0))
        analysis["provider"] = "openai"
        return analysis

    def analyze(self, text: str) -> dict:
        """OpenAI analysis when configured, keyword analysis otherwise or on failure"""
        if not self.ai_configured:
            return basic_text_analysis(text)
        try:
            return self._ai_analysis(text)
        except Exception as e:
            logger.warning(f"⚠️ AI text analysis failed, using keyword analysis: {e}")
            return basic_text_analysis(text)

    def classify(self, content: str) -> Classification:
        analysis = self.analyze(content)
        profanity = detect_profanity(content)
        hate = detect_hate_speech(content)
        spam = detect_spam(content)

        result = Classification(details={
            "textAnalysis": analysis,
            "profanity": {**profanity, "severity": profanity["severity"].value},
            "hateSpeech": {**hate, "categories": [c.value for c in hate["categories"]]},
            "spam": spam,
        })

        if profanity["hasProfanity"]:
            result.categories.append(ModerationCategory.PROFANITY)
            result.severity = profanity["severity"]
            result.confidence = max(result.confidence, 0.7)

        if hate["isHateSpeech"]:
            result.categories.extend(hate["categories"])
            result.severity = ModerationSeverity.HIGH
            result.confidence = max(result.confidence, hate["confidence"])

        if spam["isSpam"]:
            result.categories.append(ModerationCategory.SPAM)
            # spam alone is MEDIUM, it must not soften a hate speech HIGH
            result.escalate(ModerationSeverity.MEDIUM)
            result.confidence = max(result.confidence, spam["confidence"])

        return result


class ImageClassifier:
    """Placeholder until a real image detector is plugged in"""
    name = "image"

    def classify(self, content: str) -> Classification:
        return Classification(details={"imageAnalysis": {"url": content, "stub": True}})


class VideoClassifier:
    """Placeholder until a real video detector is plugged in"""
    name = "video"

    def classify(self, content: str) -> Classification:
        return Classification(details={"videoAnalysis": {"url": content, "stub": True}})


# =============================================================================
# ===================== DECISION ==============================================
# =============================================================================

def decide(classification: Classification) -> tuple[ModerationStatus, ModerationAction, ModerationSeverity]:
    categories = classification.categories
    severity = classification.severity

    if not categories:
        return ModerationStatus.APPROVED, ModerationAction.APPROVE, severity

    if any(c in CRITICAL_CATEGORIES for c in categories):
        return ModerationStatus.REJECTED, ModerationAction.REJECT, ModerationSeverity.CRITICAL

    if severity == ModerationSeverity.HIGH:
        return ModerationStatus.REJECTED, ModerationAction.REJECT, severity

    # MEDIUM goes to review, and so does anything lower once a category was found
    return ModerationStatus.FLAGGED, ModerationAction.FLAG, severity


class ContentModerator:
    """
    Built once at startup and injected. `enabled` only controls the
    automatic moderation of new submissions: the /api/moderation
    endpoints always run.
    """

    def __init__(
        self,
        text: Optional[Classifier] = None,
        image: Optional[Classifier] = None,
        video: Optional[Classifier] = None,
        enabled: Optional[bool] = None,
    ):
        self.classifiers = {
            "TEXT": text or TextClassifier(),
            "IMAGE": image or ImageClassifier(),
            "VIDEO": video or VideoClassifier(),
        }
        self.enabled = settings.enable_moderation if enabled is None else enabled

    def moderate(self, content_type: str, content: str, content_id: Optional[str] = None) -> ModerationResult:
        content_type = content_type.upper()
        if content_type not in self.classifiers:
            raise ValidationError(f"Unsupported content type: {content_type}")

        classification = self.classifiers[content_type].classify(content)
        status, action, severity = decide(classification)

        reason = None
        if classification.categories:
            reason = "Content flagged for: " + ", ".join(c.value for c in classification.categories)

        if status != ModerationStatus.APPROVED:
            logger.info(f"🛡️ {content_type} content {status.value} ({reason})")

        return ModerationResult(
            content_type=content_type,
            status=status,
            severity=severity,
            categories=classification.categories,
            confidence=min(classification.confidence, 1.0),
            action=action,
            reason=reason,
            content_id=content_id,
            details=classification.details,
        )

    def health(self) -> dict:
        text = self.classifiers["TEXT"]
        return {
            "autoModeration": self.enabled,
            "strategies": {
                "text": "openai+keywords" if getattr(text, "ai_configured", False) else "keywords",
                "image": "stub" if isinstance(self.classifiers["IMAGE"], ImageClassifier) else "custom",
                "video": "stub" if isinstance(self.classifiers["VIDEO"], VideoClassifier) else "custom",
            },
        }
