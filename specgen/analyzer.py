"""Requirement analysis for free-text feature requests.

Two independent classifier families live here. ``analyze_requirements`` and
``determine_priority`` work on whole tokens of a feature description and feed
the architect workflow. ``detect_feature_group``, ``detect_theme_category``
and ``detect_priority`` use substring matching over title and body and are
used by the store when a spec arrives without explicit metadata. Their
outputs can disagree for the same text.
"""

from __future__ import annotations

import re
from typing import Dict, Iterable, Optional, Tuple

from .models import RequirementProfile

TECHNICAL_VOCABULARY = frozenset({
    "auth", "database", "api", "ui", "frontend", "backend", "integration",
    "component", "service", "model", "controller", "migration", "test",
})

# Evaluated in order; the first group whose words intersect the tokens wins.
GROUP_KEYWORDS: Tuple[Tuple[str, frozenset], ...] = (
    ("auth", frozenset({"auth", "login", "security", "jwt"})),
    ("ui", frozenset({"ui", "component", "frontend", "dashboard"})),
    ("api", frozenset({"api", "endpoint", "service", "backend"})),
    ("data", frozenset({"database", "model", "migration", "schema"})),
    ("integration", frozenset({"mcp", "integration", "external", "webhook"})),
)

GROUP_THEMES: Dict[str, str] = {
    "auth": "backend",
    "ui": "frontend",
    "api": "backend",
    "data": "backend",
    "integration": "integration",
    "general": "general",
}

COMPLEX_MARKERS = frozenset({"system", "architecture", "complex"})
HIGH_PRIORITY_KEYWORDS = frozenset({"critical", "security", "auth", "urgent", "blocker"})

MAX_KEYWORDS = 10
TITLE_WORDS = 8
MODERATE_LENGTH = 200
COMPLEX_LENGTH = 500
MODERATE_KEYWORD_COUNT = 6

_TITLE_STRIP_PATTERN = re.compile(r"[^\w\s-]")


def analyze_requirements(text: str) -> RequirementProfile:
    """Classify a feature description into a :class:`RequirementProfile`.

    Never raises; empty input yields an untitled ``general``/``simple`` profile.
    """
    text = text or ""
    tokens = text.lower().split()
    token_set = set(tokens)

    title = _TITLE_STRIP_PATTERN.sub("", " ".join(text.split()[:TITLE_WORDS])).strip()

    candidates = (token for token in tokens if token in TECHNICAL_VOCABULARY or len(token) > 4)
    keywords = tuple(dict.fromkeys(candidates))[:MAX_KEYWORDS]

    detected_group = "general"
    for group, words in GROUP_KEYWORDS:
        if token_set & words:
            detected_group = group
            break

    complexity = "simple"
    if len(text) > MODERATE_LENGTH or len(keywords) > MODERATE_KEYWORD_COUNT:
        complexity = "moderate"
    if len(text) > COMPLEX_LENGTH or token_set & COMPLEX_MARKERS:
        complexity = "complex"

    return RequirementProfile(
        title=title,
        keywords=keywords,
        detected_group=detected_group,
        detected_theme=GROUP_THEMES[detected_group],
        complexity=complexity,
    )


def determine_priority(profile: RequirementProfile) -> str:
    """Priority derived from an analyzed profile."""
    if profile.detected_group == "auth" or any(k in HIGH_PRIORITY_KEYWORDS for k in profile.keywords):
        return "high"
    if profile.complexity == "complex" or profile.detected_group in ("ui", "api"):
        return "medium"
    return "low"


# Substring classifiers over title and body.

SUBSTRING_HIGH_PRIORITY = (
    "critical", "urgent", "blocker", "security", "bug fix",
    "hotfix", "emergency", "production", "breaking",
)
SUBSTRING_LOW_PRIORITY = (
    "nice to have", "enhancement", "optimization", "refactor",
    "cleanup", "documentation", "future", "ideas",
)

# (keywords, weight) per group; a group needs at least two hits to qualify.
FEATURE_GROUP_PATTERNS: Dict[str, Tuple[Tuple[str, ...], float]] = {
    "auth": (("authentication", "login", "user", "security", "jwt", "oauth", "session", "password", "token"), 1.0),
    "ui": (("dashboard", "component", "frontend", "react", "interface", "page", "view", "layout", "design"), 1.0),
    "api": (("endpoint", "rest", "graphql", "service", "backend", "controller", "route", "handler"), 1.0),
    "data": (("database", "migration", "schema", "model", "storage", "query", "sql", "table", "record"), 1.0),
    "integration": (("mcp", "webhook", "external", "api client", "sync", "third-party", "connector", "plugin"), 1.0),
    "testing": (("test", "spec", "unit", "integration", "e2e", "mock", "fixture", "coverage"), 0.9),
    "deployment": (("deploy", "docker", "kubernetes", "pipeline", "ci/cd", "build", "release"), 0.9),
    "documentation": (("docs", "documentation", "readme", "guide", "tutorial", "manual"), 0.8),
}

STORE_GROUP_THEMES: Dict[str, str] = {
    **GROUP_THEMES,
    "testing": "general",
    "deployment": "infrastructure",
    "documentation": "general",
}

THEME_OVERRIDES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("frontend", ("frontend", "ui", "component")),
    ("backend", ("backend", "server", "api")),
    ("infrastructure", ("infrastructure", "devops", "deployment")),
    ("integration", ("integration", "mcp", "external")),
)


def _contains_any(haystack: str, needles: Iterable[str]) -> bool:
    return any(needle in haystack for needle in needles)


def detect_priority(title: str, body: str) -> str:
    combined = f"{title or ''} {body or ''}".lower()
    if _contains_any(combined, SUBSTRING_HIGH_PRIORITY):
        return "high"
    if _contains_any(combined, SUBSTRING_LOW_PRIORITY):
        return "low"
    return "medium"


def detect_feature_group(title: str, body: str) -> str:
    """Best weighted group by substring hits, or ``general``."""
    combined = f"{title or ''} {body or ''}".lower()

    best_group = "general"
    best_score = 0.0
    for group, (keywords, weight) in FEATURE_GROUP_PATTERNS.items():
        matches = [keyword for keyword in keywords if keyword in combined]
        score = len(matches) / len(keywords) * weight
        if len(matches) >= 2 and score > best_score:
            best_group = group
            best_score = score

    return best_group


def detect_theme_category(feature_group: str, body: Optional[str] = None) -> str:
    if body:
        lowered = body.lower()
        for theme, markers in THEME_OVERRIDES:
            if _contains_any(lowered, markers):
                return theme
    return STORE_GROUP_THEMES.get(feature_group, "general")
