"""
Match identity resolution.

Maps the heterogeneous match references the scouting form and external
providers produce (store ids, typed labels such as "Q12" or "SF1-2",
composite strings such as "<docid>-Qualification 9") onto the store-assigned
match id for a competition.
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, NewType, Optional

from scouting.services.scoring_service import get_field
from scouting.utils.constants import DISPLAY_LABEL_MAX_LENGTH, MATCH_REF_SEPARATOR

logger = logging.getLogger(__name__)

CanonicalMatchId = NewType("CanonicalMatchId", str)


@dataclass(frozen=True)
class MatchReference:
    """
    Result of resolving a raw match reference.

    ``match_id`` is only set when the reference resolved to a known match;
    otherwise ``raw`` carries the untrusted input unchanged.
    """

    raw: str
    match_id: Optional[CanonicalMatchId] = None

    @property
    def is_canonical(self) -> bool:
        return self.match_id is not None

    @property
    def key(self) -> str:
        """Value to store and join on: the canonical id when known, else the raw reference."""
        return self.match_id if self.match_id is not None else self.raw


def _matches_in_competition(competition_id: str, known_matches: Iterable[Any]) -> List[Any]:
    return [m for m in known_matches if get_field(m, "competition_id") == competition_id]


def _first_with_label(label: str, matches: List[Any]) -> Optional[Any]:
    # First match wins; order is whatever the caller's query returned.
    for match in matches:
        if get_field(match, "label") == label:
            return match
    return None


def _label_candidates(reference: str) -> List[str]:
    """
    Label candidates for a trimmed reference, most specific first.

    The whole value, then the segment after the last separator, then the
    longer separator-delimited suffixes ("abc-SF1-2" -> "SF1-2").
    """
    candidates = [reference]
    if MATCH_REF_SEPARATOR in reference:
        parts = reference.split(MATCH_REF_SEPARATOR)
        suffixes = [MATCH_REF_SEPARATOR.join(parts[i:]).strip() for i in range(len(parts) - 1, 0, -1)]
        for suffix in suffixes:
            if suffix and suffix not in candidates:
                candidates.append(suffix)
    return candidates


def resolve_canonical_match_id(
    competition_id: str,
    raw_reference: Optional[str],
    known_matches: Iterable[Any],
) -> MatchReference:
    """
    Resolve a raw match reference to the canonical match id within a competition.

    Never raises. When no known match fits, the original reference is returned
    unchanged as a non-canonical MatchReference.

    Args:
        competition_id: Competition scope
        raw_reference: Store id, human label or composite "<docid>-<label>" string
        known_matches: Match rows (ORM objects or dicts) with id, competition_id, label

    Returns:
        MatchReference whose ``key`` is the canonical id or the raw reference
    """
    raw = "" if raw_reference is None else str(raw_reference)
    candidate = raw.strip()
    if not candidate:
        return MatchReference(raw=raw)

    scoped = _matches_in_competition(competition_id, known_matches)

    # Already canonical
    for match in scoped:
        if get_field(match, "id") == candidate:
            return MatchReference(raw=raw, match_id=CanonicalMatchId(candidate))

    for label in _label_candidates(candidate):
        match = _first_with_label(label, scoped)
        if match is not None:
            return MatchReference(raw=raw, match_id=CanonicalMatchId(get_field(match, "id")))

    logger.warning(
        "No match in competition %s for reference %r; keeping raw reference",
        competition_id,
        raw,
    )
    return MatchReference(raw=raw)


def display_label(reference: Optional[str], known_matches: Iterable[Any]) -> str:
    """
    Human-readable label for a stored match reference.

    Exact id lookup first; a value that is itself a known label is kept;
    composite values show their trailing segment; long opaque values are
    truncated with an ellipsis.
    """
    value = "" if reference is None else str(reference)
    known = list(known_matches)

    for match in known:
        if get_field(match, "id") == value:
            return get_field(match, "label") or value

    if any(get_field(match, "label") == value for match in known):
        return value

    if MATCH_REF_SEPARATOR in value:
        return value.rsplit(MATCH_REF_SEPARATOR, 1)[-1].strip()

    if len(value) > DISPLAY_LABEL_MAX_LENGTH:
        return value[:DISPLAY_LABEL_MAX_LENGTH] + "..."

    return value


def _ends_with_label(reference: str, label: str) -> bool:
    """
    Stricter than a plain endswith: the character before the suffix must not
    be alphanumeric, so "doc-Q12" ends with "Q12" but "Q112" does not.
    """
    if not label or not reference.endswith(label) or reference == label:
        return False
    preceding = reference[-len(label) - 1]
    return not preceding.isalnum()


def find_target_match(competition_id: str, target_label: str, known_matches: Iterable[Any]) -> Optional[Any]:
    """First known match in the competition carrying ``target_label``."""
    return _first_with_label(target_label, _matches_in_competition(competition_id, known_matches))


def normalize_existing_observations(
    competition_id: str,
    target_label: str,
    known_matches: Iterable[Any],
    observations: Iterable[Any],
) -> List[Any]:
    """
    Select observations whose stored reference should point at the match labelled ``target_label``.

    Pure selection step of the batch repair. Rows already carrying the
    canonical id are excluded, so once the updates are applied a second call
    returns an empty list.

    Args:
        competition_id: Competition scope
        target_label: Label of the canonical match to repair towards
        known_matches: Match rows for lookup
        observations: Observation rows (any competition; filtered here)

    Returns:
        Observations needing their match_ref set to the target's id
    """
    known = list(known_matches)
    target = find_target_match(competition_id, target_label, known)
    if target is None:
        return []

    canonical_id = get_field(target, "id")
    resolved_label = display_label(canonical_id, known)

    selected = []
    for observation in observations:
        if get_field(observation, "competition_id") != competition_id:
            continue
        reference = str(get_field(observation, "match_ref") or "")
        if reference == canonical_id:
            continue
        if (
            reference == resolved_label
            or _ends_with_label(reference, target_label)
            or reference == target_label
        ):
            selected.append(observation)
    return selected
