"""Text screening for chat messages.

Local checks run first (profanity, personal information, shouting, character
spam). The Gemini classifier is advisory: when it fails, the local score is
compared against the fallback threshold and the message is flagged unverified.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import List

from better_profanity import profanity
from flask import current_app

from utils import classifier
from utils.errors import CoreError, InvalidContent

logger = logging.getLogger(__name__)

# Load default censor words on module import
profanity.load_censor_words()

PII_PATTERNS = [
    ('email', re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")),
    ('credit_card', re.compile(r"\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b")),
    ('ssn', re.compile(r"\b\d{3}-\d{2}-\d{4}\b")),
    ('phone_number', re.compile(r"(?<!\d)(?:\+?\d{1,3}[\s.-]?)?\(?\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}(?!\d)")),
]
REPETITION = re.compile(r"(.)\1{5,}")

PII_SCORE = 0.5
CAPS_SCORE = 0.2
REPETITION_SCORE = 0.2


@dataclass
class ScreenResult:
    score: float = 0.0
    labels: List[str] = field(default_factory=list)
    unverified: bool = False


def has_excessive_caps(text: str) -> bool:
    if len(text) < 10:
        return False
    caps = sum(1 for ch in text if 'A' <= ch <= 'Z')
    return caps / len(text) > 0.7


def find_pii(text: str) -> List[str]:
    return [name for name, pattern in PII_PATTERNS if pattern.search(text)]


def local_score(text: str) -> ScreenResult:
    result = ScreenResult()
    if profanity.contains_profanity(text):
        result.score = 1.0
        result.labels.append('profanity')
    pii = find_pii(text)
    if pii:
        result.score += PII_SCORE * len(pii)
        result.labels.extend(f"pii:{name}" for name in pii)
    if has_excessive_caps(text):
        result.score += CAPS_SCORE
        result.labels.append('excessive_caps')
    if REPETITION.search(text):
        result.score += REPETITION_SCORE
        result.labels.append('excessive_repetition')
    result.score = min(1.0, result.score)
    return result


def screen_text(text: str) -> ScreenResult:
    """Return the screening verdict for `text`, or raise InvalidContent"""
    config = current_app.config
    severity = config['MODERATION_SEVERITY_THRESHOLD'] / 10.0

    result = local_score(text)
    if result.score >= severity or any(label == 'profanity' or label.startswith('pii:') for label in result.labels):
        raise InvalidContent("Message content is not allowed", labels=result.labels)

    if not config.get('CLASSIFIER_ENABLED'):
        return result

    try:
        verdict = classifier.classify(text)
    except CoreError as e:
        logger.warning(f"Classifier unavailable, using fallback threshold: {e.message}")
        if result.score >= config['CLASSIFIER_FALLBACK_THRESHOLD']:
            raise InvalidContent("Message content is not allowed", labels=result.labels)
        result.unverified = True
        return result

    if verdict.score >= config['CLASSIFIER_REJECT_THRESHOLD']:
        raise InvalidContent("Message content is not allowed", labels=verdict.labels)
    result.score = max(result.score, verdict.score)
    result.labels.extend(label for label in verdict.labels if label not in result.labels)
    return result
