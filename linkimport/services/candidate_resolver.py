"""Resolve extracted place mentions into add_place operations or clarifications.

Each candidate ends up in exactly one bucket:
  - committed:     a confident match contributed an add_place operation
                   (or an attribution to an existing one)
  - clarification: ambiguous match, no results, or search failure
  - dropped:       malformed, URL-like, low confidence, or never processed
                   because a cap was hit

Only the destination geocode is batch-fatal. Searches run sequentially so
attribution order is deterministic and the Places quota is respected.
"""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

import structlog

from linkimport.core.config import settings
from linkimport.core.constants import PLACE_RESOURCE_PREFIX, MatchThresholds, ResolverLimits
from linkimport.core.metrics import place_candidates_total
from linkimport.models.schemas import (
    AddPlaceOperation,
    Attribution,
    Candidate,
    ClarificationOption,
    Destination,
    PendingClarification,
    ResolveResult,
)
from linkimport.services.match_scorer import score_place_match
from linkimport.tools.geocode_mapbox import fetch_city_coordinates
from linkimport.tools.places_google import search_places_by_text

logger = structlog.get_logger(__name__)

GeocodeFn = Callable[[str, str], Awaitable[dict]]
SearchPlacesFn = Callable[[str, float, float, int], Awaitable[list[dict]]]

_URL_LIKE_RE = re.compile(r"^https?://|\bwww\.", re.IGNORECASE)

MISSING_DESTINATION_MESSAGE = (
    "I can import places from links, but I need the destination city and country "
    "to search for matching places."
)
GEOCODE_FAILED_MESSAGE = (
    "I couldn't look up the destination location right now. Please try again, or paste "
    "Google Maps links for the specific places you want to add."
)


def normalize_place_id(value: str) -> str:
    """Strip the "places/" resource-name prefix from a place id."""
    trimmed = str(value or "").strip()
    if trimmed.startswith(PLACE_RESOURCE_PREFIX):
        return trimmed[len(PLACE_RESOURCE_PREFIX) :]
    return trimmed


def is_likely_url(value: str) -> bool:
    return bool(_URL_LIKE_RE.search(value))


def clarification_message(query: str, destination_label: str, options: Sequence[dict]) -> str:
    header = f'Which place did you mean for "{query}" in {destination_label}?'
    if not options:
        return f"{header}\n\nPlease reply with a specific place name, or paste a Google Maps link."

    lines = "\n".join(
        f"{idx}) {opt['name']}" + (f" - {opt['address']}" if opt.get("address") else "")
        for idx, opt in enumerate(options[: ResolverLimits.MAX_OPTIONS], start=1)
    )
    return f"{header}\n\n{lines}\n\nReply with the correct option (or paste a Google Maps link)."


def search_failed_message(query: str) -> str:
    return f'I couldn\'t search for "{query}" right now. Please paste a Google Maps link for that place.'


@dataclass
class _Ranked:
    place_id: str
    name: str
    address: str | None
    score: float


@dataclass
class _Accumulator:
    """Per-call resolution state, threaded through each candidate step."""

    operations: list[AddPlaceOperation] = field(default_factory=list)
    attributions_by_place: dict[str, list[Attribution]] = field(default_factory=dict)
    clarifications: list[str] = field(default_factory=list)
    pending_clarifications: list[PendingClarification] = field(default_factory=list)
    pending_claimed: bool = False
    committed: int = 0
    clarified: int = 0
    dropped: int = 0

    def has_operation(self, place_id: str) -> bool:
        return any(op.place_id == place_id for op in self.operations)

    def to_result(self) -> ResolveResult:
        return ResolveResult(
            operations=self.operations,
            attributions=[a for group in self.attributions_by_place.values() for a in group],
            clarifications=self.clarifications[: ResolverLimits.MAX_CLARIFICATIONS],
            pending_clarifications=self.pending_clarifications,
            dropped_count=self.dropped,
        )


def _rank_results(query: str, results: Sequence[dict]) -> list[_Ranked]:
    ranked = []
    for row in results[: ResolverLimits.MAX_RESULTS_PER_QUERY]:
        name = str(row.get("name") or "")
        address = row.get("address")
        ranked.append(
            _Ranked(
                place_id=normalize_place_id(str(row.get("place_id") or "")),
                name=name or "Unknown",
                address=address if isinstance(address, str) and address else None,
                score=score_place_match(query, name),
            )
        )
    # sorted() is stable: equal scores keep the search service's order
    return sorted(ranked, key=lambda r: r.score, reverse=True)


def _is_clear_best(ranked: Sequence[_Ranked]) -> bool:
    if len(ranked) == 1:
        return True
    best = ranked[0].score
    runner_up = ranked[1].score
    return (
        best >= MatchThresholds.AUTO_ACCEPT_SCORE
        and best - runner_up >= MatchThresholds.AUTO_ACCEPT_MARGIN
    )


def _should_drop(candidate: Candidate) -> bool:
    query = str(candidate.query or "").strip()
    if len(query) < ResolverLimits.MIN_QUERY_LENGTH or is_likely_url(query):
        return True
    return candidate.confidence is not None and candidate.confidence < ResolverLimits.MIN_CONFIDENCE


def _record_ambiguous(
    acc: _Accumulator,
    candidate: Candidate,
    query: str,
    destination_label: str,
    ranked: Sequence[_Ranked],
) -> None:
    top = ranked[: ResolverLimits.MAX_OPTIONS]
    acc.clarifications.append(
        clarification_message(
            query, destination_label, [{"name": r.name, "address": r.address} for r in top]
        )
    )
    acc.clarified += 1

    # The first ambiguous mention owns the pending slot; if none of its options
    # has a place id, no later mention takes it.
    if acc.pending_claimed:
        return
    acc.pending_claimed = True
    options = [
        ClarificationOption(place_id=r.place_id, name=r.name, address=r.address)
        for r in top
        if r.place_id
    ]
    if options:
        acc.pending_clarifications.append(
            PendingClarification(
                query=query,
                source_canonical_url=candidate.source_canonical_url,
                evidence=candidate.evidence,
                options=options,
            )
        )


def _record_match(acc: _Accumulator, candidate: Candidate, query: str, best: _Ranked) -> None:
    if not acc.has_operation(best.place_id):
        acc.operations.append(
            AddPlaceOperation(place_id=best.place_id, query=query, name=best.name)
        )
    # Every mention keeps its own provenance, even when the operation already exists.
    acc.attributions_by_place.setdefault(best.place_id, []).append(
        Attribution(
            place_id=best.place_id,
            source_canonical_url=candidate.source_canonical_url,
            snippet=candidate.evidence,
            timestamp_seconds=None,
        )
    )
    acc.committed += 1


async def _resolve_candidate(
    acc: _Accumulator,
    candidate: Candidate,
    *,
    latitude: float,
    longitude: float,
    destination_label: str,
    search_places: SearchPlacesFn,
    radius_meters: int,
) -> None:
    if _should_drop(candidate):
        acc.dropped += 1
        return

    query = str(candidate.query).strip()
    try:
        results = await search_places(query, latitude, longitude, radius_meters)
    except Exception as exc:
        logger.warning(
            "candidate_resolver.search_failed", query_preview=query[:80], error=str(exc)
        )
        acc.clarifications.append(search_failed_message(query))
        acc.clarified += 1
        return

    ranked = _rank_results(query, list(results or []))
    if not ranked:
        acc.clarifications.append(clarification_message(query, destination_label, []))
        acc.clarified += 1
        return

    best = ranked[0]
    if not best.place_id or not _is_clear_best(ranked):
        logger.info(
            "candidate_resolver.ambiguous",
            query_preview=query[:80],
            top_score=round(best.score, 3),
            runner_up_score=round(ranked[1].score, 3) if len(ranked) > 1 else None,
        )
        _record_ambiguous(acc, candidate, query, destination_label, ranked)
        return

    _record_match(acc, candidate, query, best)


def _short_circuit(message: str, candidate_count: int) -> ResolveResult:
    place_candidates_total.labels(outcome="dropped").inc(candidate_count)
    return ResolveResult(clarifications=[message], dropped_count=candidate_count)


async def resolve_place_candidates(
    destination: Destination,
    candidates: Sequence[Candidate],
    *,
    max_operations: int = ResolverLimits.DEFAULT_MAX_OPERATIONS,
    geocode: GeocodeFn | None = None,
    search_places: SearchPlacesFn | None = None,
    radius_meters: int | None = None,
) -> ResolveResult:
    """Turn place mentions into at most max_operations unique add_place operations.

    Args:
        destination: Trip destination; both city and country are required.
        candidates: Mentions extracted from fetched link content.
        max_operations: Cap on emitted operations; processing stops once reached.
        geocode: (city, country) -> {"latitude", "longitude"}; raises on failure.
        search_places: (query, lat, lng, radius_meters) -> [{"place_id", "name",
            "address"}, ...]; raises on failure.
        radius_meters: Search radius around the destination.

    Returns:
        ResolveResult with operations, attributions, up to 5 clarifications,
        pending clarifications and the dropped count.
    """
    candidates = list(candidates or [])
    city = str(destination.city or "").strip()
    country = str(destination.country or "").strip()

    if not city or not country:
        logger.info("candidate_resolver.missing_destination", candidate_count=len(candidates))
        return _short_circuit(MISSING_DESTINATION_MESSAGE, len(candidates))

    geocode = geocode or fetch_city_coordinates
    search_places = search_places or search_places_by_text
    radius_meters = radius_meters or settings.PLACES_SEARCH_RADIUS_METERS
    destination_label = f"{city}, {country}"

    try:
        coordinates = await geocode(city, country)
        latitude = float(coordinates["latitude"])
        longitude = float(coordinates["longitude"])
    except Exception as exc:
        logger.warning(
            "candidate_resolver.geocode_failed", destination=destination_label, error=str(exc)
        )
        return _short_circuit(GEOCODE_FAILED_MESSAGE, len(candidates))

    acc = _Accumulator()
    for index, candidate in enumerate(candidates):
        if index >= ResolverLimits.MAX_CANDIDATES or len(acc.operations) >= max_operations:
            acc.dropped += len(candidates) - index
            break
        await _resolve_candidate(
            acc,
            candidate,
            latitude=latitude,
            longitude=longitude,
            destination_label=destination_label,
            search_places=search_places,
            radius_meters=radius_meters,
        )

    place_candidates_total.labels(outcome="committed").inc(acc.committed)
    place_candidates_total.labels(outcome="clarification").inc(acc.clarified)
    place_candidates_total.labels(outcome="dropped").inc(acc.dropped)
    logger.info(
        "candidate_resolver.done",
        destination=destination_label,
        candidate_count=len(candidates),
        operations=len(acc.operations),
        committed=acc.committed,
        clarified=acc.clarified,
        dropped=acc.dropped,
    )
    return acc.to_result()
