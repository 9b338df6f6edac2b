from enum import StrEnum


class ResolverLimits:
    MAX_CANDIDATES = 30
    MAX_RESULTS_PER_QUERY = 6
    MAX_OPTIONS = 3
    MAX_CLARIFICATIONS = 5
    DEFAULT_MAX_OPERATIONS = 15
    MIN_QUERY_LENGTH = 2
    MIN_CONFIDENCE = 0.25


class MatchThresholds:
    EXACT = 1.0
    SUBSTRING = 0.95
    AUTO_ACCEPT_SCORE = 0.75
    AUTO_ACCEPT_MARGIN = 0.20


class LinkProvider(StrEnum):
    YOUTUBE = "youtube"
    TIKTOK = "tiktok"
    INSTAGRAM = "instagram"
    TRIPADVISOR = "tripadvisor"
    WEB = "web"


REDIRECT_STATUSES: frozenset[int] = frozenset({301, 302, 303, 307, 308})

ALLOWED_SCHEMES: frozenset[str] = frozenset({"http", "https"})

# Place resource names come back as "places/<id>" from the v1 API
PLACE_RESOURCE_PREFIX = "places/"
