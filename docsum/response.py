"""Best-effort extraction of a summary and keywords from a model reply.

Models are asked for JSON but frequently answer with labelled prose or plain
text.  ``parse_summary_and_keywords`` tries three strategies in order and
never raises:

1. The span between the first ``{`` and the last ``}`` decoded as JSON.  The
   longest string value anywhere in the object is taken as the summary;
   values under a ``keywords`` key become the keyword list.
2. ``Summary:`` / ``Keywords:`` labelled lines.
3. The whole trimmed reply as summary, keywords derived by word frequency.

A ``None`` summary means nothing usable was found.
"""

import json
import logging
import re
from collections import Counter
from typing import Any

logger = logging.getLogger(__name__)

MAX_KEYWORDS = 4

STOP_WORDS = frozenset(
    """
    the and for are but not you all can had her was one our out day get has
    him his how its may new now old see two who boy did man oil sit set run
    eat far sea eye big box got yet way too any say she use as on at by an
    to in is it of find only come made over also back call came each good
    here just know last left life long look make most move must name need
    next open part play said same seem show side take tell turn want ways
    well went were what when will work year your being every great might
    shall still those under where after again before found going house never
    other right small sound such these thing think three through time very
    water words world years young about above could first place should their
    there this with from that into they summary keywords document text
    analysis content file page section chapter paragraph sentence word
    information data example point points application questions discussion
    prayer lesson story people
    """.split()
)

_TOKEN_SPLIT = re.compile(r"[^0-9a-z]+")
_KEYWORD_STRIP = "[]\"'"


def parse_summary_and_keywords(raw: str) -> tuple[str | None, list[str]]:
    """Return ``(summary, keywords)`` extracted from a model reply.

    ``summary`` is ``None`` only when *raw* is blank.
    """
    parsed = _parse_json_reply(raw)
    if parsed is not None:
        return parsed

    parsed = _parse_labelled_reply(raw)
    if parsed is not None:
        return parsed

    cleaned = raw.strip()
    if not cleaned:
        return None, []
    logger.debug("Reply is neither JSON nor labelled; using plain-text fallback")
    return cleaned, extract_keywords(cleaned)


def extract_keywords(text: str, limit: int = MAX_KEYWORDS) -> list[str]:
    """Return the *limit* most frequent meaningful words of *text*.

    Words of three characters or fewer and stop words are ignored.  Ties keep
    first-seen order.
    """
    words = [
        w
        for w in _TOKEN_SPLIT.split(text.lower())
        if len(w) > 3 and w not in STOP_WORDS
    ]
    return [word for word, _ in Counter(words).most_common(limit)]


# ---------------------------------------------------------------------------
# Strategy 1: JSON
# ---------------------------------------------------------------------------


def _parse_json_reply(raw: str) -> tuple[str, list[str]] | None:
    start = raw.find("{")
    end = raw.rfind("}")
    if start == -1 or end == -1 or end < start:
        return None
    try:
        data = json.loads(raw[start : end + 1])
    except json.JSONDecodeError as e:
        logger.debug("JSON span did not decode: %s", e)
        return None
    if not isinstance(data, dict):
        return None

    candidates: list[str] = []
    keywords: list[str] = []
    _collect_strings(data, candidates, keywords)

    summary = max(candidates, key=len, default="")
    if not summary:
        return None
    if not keywords:
        keywords = extract_keywords(summary)
    return summary, keywords


def _collect_strings(node: Any, candidates: list[str], keywords: list[str]) -> None:
    """Walk decoded JSON, sorting string values into summary candidates and keywords."""
    if isinstance(node, dict):
        for key, value in node.items():
            if str(key).lower() == "keywords" and _is_keyword_value(value):
                keywords.extend(_keyword_values(value))
            elif isinstance(value, str):
                candidates.append(value)
            else:
                _collect_strings(value, candidates, keywords)
    elif isinstance(node, list):
        # Bare strings in arrays (tags, labels) are never the summary.
        for item in node:
            _collect_strings(item, candidates, keywords)


def _is_keyword_value(value: Any) -> bool:
    if isinstance(value, str):
        return True
    return isinstance(value, list) and all(isinstance(v, str) for v in value)


def _keyword_values(value: str | list[str]) -> list[str]:
    items = value.split(",") if isinstance(value, str) else value
    return [item.strip() for item in items if item.strip()]


# ---------------------------------------------------------------------------
# Strategy 2: labelled lines
# ---------------------------------------------------------------------------


def _parse_labelled_reply(raw: str) -> tuple[str, list[str]] | None:
    lines = [line.strip() for line in raw.splitlines()]
    summary: str | None = None
    keywords: list[str] = []

    for index, line in enumerate(lines):
        lowered = line.lower()
        if lowered.startswith("summary:") and summary is None:
            parts = [line[len("summary:") :].strip()]
            for following in lines[index + 1 :]:
                if not following or following.lower().startswith("keywords:"):
                    break
                parts.append(following)
            text = " ".join(p for p in parts if p)
            if text:
                summary = text
        elif lowered.startswith("keywords:"):
            keywords = _split_keyword_line(line[len("keywords:") :])

    if summary is None:
        return None
    if not keywords:
        keywords = extract_keywords(summary)
    return summary, keywords


def _split_keyword_line(value: str) -> list[str]:
    cleaned = []
    for item in value.split(","):
        item = item.strip()
        for ch in _KEYWORD_STRIP:
            item = item.replace(ch, "")
        item = item.strip()
        if item:
            cleaned.append(item)
    return cleaned[:MAX_KEYWORDS]
