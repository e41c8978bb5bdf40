"""
Pre-send newsletter quality checks: readability, spam triggers, image alt
text, links and subject length, rolled up into a composite score and grade.
"""
from __future__ import annotations

import math
import re
from typing import Any, Dict, List

from bs4 import BeautifulSoup

from app.utils.helpers import strip_html, unique

SPAM_WORDS = [
    "free", "winner", "won", "prize", "urgent", "act now", "limited time",
    "click here", "guaranteed", "no risk", "earn money", "make money",
    "cash bonus", "double your", "while supplies last",
]

MAX_SUBJECT_LENGTH = 50


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def count_syllables(word: str) -> int:
    w = re.sub(r"[^a-z]", "", word.lower())
    if not w:
        return 0
    if len(w) <= 3:
        return 1
    stripped = re.sub(r"(?:[^laeiouy]es|ed|[^laeiouy]e)$", "", w)
    stripped = re.sub(r"^y", "", stripped)
    groups = re.findall(r"[aeiouy]{1,2}", stripped)
    return max(1, len(groups))


def readability_score(text: str) -> int:
    """Flesch reading ease clamped to 0..100; 50 when there is nothing to score."""
    sentences = [s for s in re.split(r"[.!?]+", text) if s.strip()]
    words = text.split()
    if not sentences or not words:
        return 50
    avg_words_per_sentence = len(words) / len(sentences)
    avg_syllables_per_word = sum(count_syllables(w) for w in words) / len(words)
    score = 206.835 - 1.015 * avg_words_per_sentence - 84.6 * avg_syllables_per_word
    return max(0, min(100, _round_half_up(score)))


def detect_spam(subject: str, content: str) -> List[str]:
    text = f"{subject} {content}".lower()
    return [word for word in SPAM_WORDS if word in text]


def find_missing_alt_text(soup: BeautifulSoup) -> List[str]:
    return [
        img.get("src") or "unknown image"
        for img in soup.find_all("img")
        if not (img.get("alt") or "").strip()
    ]


def find_links(soup: BeautifulSoup) -> List[str]:
    hrefs = [a.get("href", "") for a in soup.find_all(href=True)]
    return unique([h for h in hrefs if h.startswith(("http://", "https://"))])


def letter_grade(score: int) -> str:
    if score >= 90:
        return "A"
    if score >= 80:
        return "B"
    if score >= 70:
        return "C"
    if score >= 60:
        return "D"
    return "F"


def check_quality(content_html: str, subject_line: str = "") -> Dict[str, Any]:
    """
    Score a newsletter before sending.

    The composite weights readability 40%, spam-freeness 30%, alt-text
    coverage 20% and subject length 10%.
    """
    soup = BeautifulSoup(content_html, "html.parser")
    plain_text = strip_html(content_html)

    readability = readability_score(plain_text)
    spam_words = detect_spam(subject_line, plain_text)
    spam_score = min(100, len(spam_words) * 15)
    missing_alt = find_missing_alt_text(soup)
    links = find_links(soup)

    subject_length_ok = 0 < len(subject_line) <= MAX_SUBJECT_LENGTH
    alt_score = 100 if not missing_alt else max(0, 100 - len(missing_alt) * 20)
    if subject_length_ok:
        subject_score = 100
    elif not subject_line:
        subject_score = 0
    else:
        subject_score = 60

    composite = _round_half_up(
        readability * 0.4 + (100 - spam_score) * 0.3 + alt_score * 0.2 + subject_score * 0.1
    )

    return {
        "readability_score": readability,
        "spam_score": spam_score,
        "spam_words_found": spam_words,
        "missing_alt_text": missing_alt,
        "links_found": links,
        "subject_length_ok": subject_length_ok,
        "subject_length": len(subject_line),
        "overall_score": composite,
        "overall_grade": letter_grade(composite),
    }
