"""Strategies for deciding whether a policy's farm lies in an observed location.

Farm locations and oracle locations are typed independently by different
organizations ("Central, Bangkok" vs "Central_Bangkok"), so the default
matcher is tolerant. It is still a text heuristic and will not pair names
that share no common normalized substring.

Normalization drops commas and periods as well as underscores, hyphens and
whitespace, so "Central, Bangkok" and "Central_Bangkok" compare equal.
"""

from __future__ import annotations

import abc
import re

_SEPARATORS = re.compile(r"[_\s\-,.]")


def normalize_location(location: str) -> str:
    """Lower-case and drop underscores, hyphens, whitespace, commas and periods."""
    return _SEPARATORS.sub("", (location or "").lower())


class LocationMatcher(abc.ABC):
    @abc.abstractmethod
    def matches(self, farm_location: str, observed_location: str) -> bool:
        ...


class NormalizedSubstringMatcher(LocationMatcher):
    """Match when either normalized string contains the other."""

    def matches(self, farm_location: str, observed_location: str) -> bool:
        farm = normalize_location(farm_location)
        observed = normalize_location(observed_location)
        if not farm or not observed:
            return False
        return farm in observed or observed in farm


class ExactRegionMatcher(LocationMatcher):
    """Match only identical region codes, ignoring case and surrounding space."""

    def matches(self, farm_location: str, observed_location: str) -> bool:
        farm = (farm_location or "").strip().upper()
        return bool(farm) and farm == (observed_location or "").strip().upper()


_MATCHERS: dict[str, type[LocationMatcher]] = {
    "normalized_substring": NormalizedSubstringMatcher,
    "exact_region": ExactRegionMatcher,
}


def matcher_for(strategy: str) -> LocationMatcher:
    try:
        return _MATCHERS[strategy]()
    except KeyError:
        raise ValueError(
            f"Unknown location match strategy {strategy!r}. "
            f"Must be one of: {', '.join(sorted(_MATCHERS))}"
        ) from None
