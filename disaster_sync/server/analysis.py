"""
MODULE OVERVIEW:
Keyword heuristics that stand in for an AI text and image analyzer.

WHAT IS HAPPENING HERE:
Three jobs: pull a place name out of free text ("Flooding in Lower Manhattan, NYC"),
guess a severity from alarm words, and give a first-pass verdict on a report's
image URL. The real-time layer does not care who produced these values; a hosted
model could replace this module without touching anything else.
"""
import re
from typing import List

from disaster_sync.shared.models import AnalyzeResponse, ImageVerification

_LOCATION_PATTERN = re.compile(
    r"\b(?:in|at|near|around)\s+((?:[A-Z][\w'-]*)(?:[ ,]+(?:[A-Z][\w'-]*))*)"
)

SEVERITY_KEYWORDS = {
    "critical": ["sos", "trapped", "casualties", "dead", "collapsed", "life-threatening"],
    "high": ["urgent", "emergency", "evacuate", "evacuation", "injured", "rising rapidly", "medical"],
    "low": ["minor", "resolved", "stable", "precaution"],
}

# Whole words only: "deadline" is not "dead", "unstable" is not "stable".
_SEVERITY_PATTERNS = {
    severity: re.compile(r"\b(?:" + "|".join(re.escape(w) for w in words) + r")\b")
    for severity, words in SEVERITY_KEYWORDS.items()
}

DISASTER_KEYWORDS = [
    "flood", "earthquake", "fire", "wildfire", "hurricane", "storm", "tornado",
    "landslide", "tsunami", "shelter", "water", "food", "medical", "evacuation",
]

SUSPICIOUS_URL_PATTERNS = ["fake", "mock", "test", "sample", "placeholder", "lorem", "dummy", "example"]
TRUSTED_IMAGE_HOSTS = ["imgur.com", "flickr.com", "instagram.com", "twitter.com", "facebook.com", "reddit.com", "news", "gov"]
_IMAGE_EXTENSION = re.compile(r"\.(jpg|jpeg|png|gif|webp)$", re.IGNORECASE)


def extract_location(text: str) -> str | None:
    match = _LOCATION_PATTERN.search(text or "")
    if not match:
        return None
    return match.group(1).strip(" ,") or None


def classify_severity(text: str) -> str:
    lowered = (text or "").lower()
    for severity in ("critical", "high", "low"):
        if _SEVERITY_PATTERNS[severity].search(lowered):
            return severity
    return "medium"


def extract_keywords(text: str) -> List[str]:
    lowered = (text or "").lower()
    return [k for k in DISASTER_KEYWORDS if k in lowered]


def analyze(text: str) -> AnalyzeResponse:
    return AnalyzeResponse(
        location_name=extract_location(text),
        severity=classify_severity(text),
        keywords=extract_keywords(text),
    )


def verify_image(image_url: str) -> ImageVerification:
    """
    URL-only verdict on a report image.

    Nothing is downloaded. Checks run in order and the first hit wins:
    test-looking URLs are suspicious, known hosting platforms are trusted,
    a missing image extension is suspicious, and anything else stays pending
    for a human to look at.
    """
    lowered = image_url.lower()
    if any(p in lowered for p in SUSPICIOUS_URL_PATTERNS):
        return ImageVerification(
            analysis="suspicious",
            confidence=85,
            reasoning="URL contains patterns commonly associated with test or fake content",
            image_url=image_url,
        )
    if any(h in lowered for h in TRUSTED_IMAGE_HOSTS):
        return ImageVerification(
            analysis="authentic",
            confidence=75,
            reasoning="Image hosted on commonly used platform, appears legitimate",
            image_url=image_url,
        )
    if not _IMAGE_EXTENSION.search(image_url):
        return ImageVerification(
            analysis="suspicious",
            confidence=70,
            reasoning="Unusual file format or missing file extension",
            image_url=image_url,
        )
    return ImageVerification(
        analysis="pending",
        confidence=60,
        reasoning="Image requires manual verification - automated analysis inconclusive",
        image_url=image_url,
    )
