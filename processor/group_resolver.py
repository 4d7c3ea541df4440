"""Resolution of raw group tags to registered groups."""
import logging
from typing import Dict, Iterable, List, Optional

from processor.fuzzy import FuzzyMatch, rank_candidates
from processor.models import Group, ResolveResult, Source

logger = logging.getLogger(__name__)


class GroupTagResolver:
    """
    Resolve free-text tags by exact short name or alias.

    An instance belongs to a single pipeline run. Its cache is never shared
    between runs; build a new resolver (or call clear_cache) per run.
    """

    def __init__(self, groups: Iterable[Group]):
        """
        Index the registered groups for case-insensitive lookup.

        Args:
            groups: All registered groups
        """
        self.groups: List[Group] = list(groups)
        self._by_short_name: Dict[str, List[Group]] = {}
        self._by_alias: Dict[str, Group] = {}
        for group in self.groups:
            self._by_short_name.setdefault(group.short_name.strip().lower(), []).append(group)
            for alias in group.aliases:
                self._by_alias.setdefault(alias.strip().lower(), group)
        self._cache: Dict[str, ResolveResult] = {}

    @classmethod
    def from_store(cls, store) -> 'GroupTagResolver':
        return cls(store.list_groups())

    def clear_cache(self) -> None:
        self._cache.clear()

    def resolve(self, tag: str, source: Optional[Source] = None) -> ResolveResult:
        """
        Resolve a raw tag to a group.

        Short names win over aliases. When several groups share a short name,
        the one linked to the requesting source is preferred.

        Args:
            tag: Raw tag from a scraped record
            source: Optional source used to disambiguate shared short names

        Returns:
            ResolveResult with matched flag and group id
        """
        normalized = (tag or '').strip().lower()
        if not normalized:
            return ResolveResult(matched=False)

        cache_key = f"{normalized}:{source.id}" if source else normalized
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        result = self._lookup(normalized, source)
        if not result.matched:
            logger.debug(f"No group match for tag '{tag}'")
        self._cache[cache_key] = result
        return result

    def _lookup(self, normalized: str, source: Optional[Source]) -> ResolveResult:
        by_name = self._by_short_name.get(normalized)
        if by_name:
            if source and len(by_name) > 1:
                for group in by_name:
                    if group.id in source.linked_group_ids:
                        return ResolveResult(matched=True, group_id=group.id)
            return ResolveResult(matched=True, group_id=by_name[0].id)

        alias_match = self._by_alias.get(normalized)
        if alias_match:
            return ResolveResult(matched=True, group_id=alias_match.id)

        return ResolveResult(matched=False)

    def suggest(self, tag: str, limit: int = 5) -> List[FuzzyMatch]:
        """Fuzzy suggestions for an unmatched tag. Never used to resolve."""
        return rank_candidates(tag, self.groups, limit=limit)
