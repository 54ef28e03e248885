import json
import logging
import re
from dataclasses import dataclass, field
from typing import List

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from flask import current_app

from utils.errors import Timeout, Internal

logger = logging.getLogger(__name__)

_configured_key = None

PROMPT = """You are a content moderator for a dating app chat.
Rate the following message for harassment, sexual content, hate, scams,
threats and sharing of personal contact details.
Respond with JSON only: {{"score": <0.0-1.0 overall risk>, "labels": [<short labels>]}}

Message:
{content}
"""


@dataclass
class Classification:
    score: float
    labels: List[str] = field(default_factory=list)


def _model():
    global _configured_key
    api_key = current_app.config.get('GEMINI_API_KEY')
    if not api_key:
        raise Internal("GEMINI_API_KEY not configured")
    if api_key != _configured_key:
        genai.configure(api_key=api_key)
        _configured_key = api_key
    return genai.GenerativeModel(current_app.config['CLASSIFIER_MODEL'])


def _parse(text: str) -> Classification:
    match = re.search(r"\{.*\}", text or "", re.DOTALL)
    if not match:
        raise Internal("Classifier returned no JSON")
    data = json.loads(match.group(0))
    score = float(data.get('score', 0.0))
    return Classification(score=max(0.0, min(1.0, score)), labels=list(data.get('labels') or []))


def classify(content) -> Classification:
    """
    Score text (str) or an image part ({'mime_type', 'data'}) with Gemini.

    Raises:
        Timeout: the model did not answer within CLASSIFIER_TIMEOUT
        Internal: the model is not configured or answered garbage
    """
    timeout = current_app.config['CLASSIFIER_TIMEOUT']
    if isinstance(content, str):
        parts = [PROMPT.format(content=content)]
    else:
        parts = [PROMPT.format(content="(see attached image)"), content]

    try:
        response = _model().generate_content(parts, request_options={"timeout": timeout})
        result = _parse(response.text)
    except google_exceptions.DeadlineExceeded:
        raise Timeout("Content classifier timed out")
    except (google_exceptions.GoogleAPICallError, ValueError) as e:
        raise Internal(f"Content classifier failed: {str(e)}")

    logger.debug(f"Classifier score {result.score:.2f} labels {result.labels}")
    return result
