"""Sender ranking by matching-mail volume.

What:
  Turn the gateway's sender aggregates into an ordered list of
  :class:`~mailsweep.core.models.Source` snapshots, and re-rank a refreshed
  aggregate without needlessly reshuffling the previous order.

Why:
  Triage walks senders from loudest to quietest. The walk must be
  deterministic (the gateway's own order for equal counts is unspecified) and
  a refresh after a bulk action should only move senders whose counts
  actually changed relative to their neighbours.

How:
  :func:`rank` sorts by descending count, then lower-cased address.
  :func:`rerank` seeds the list with the previous order, appends new senders
  in :func:`rank` order and applies a stable sort on descending count only.

Interfaces:
  :func:`rank`, :func:`rerank`, :func:`update_counts`,
  :func:`total_matching`, :class:`SourceRanking`.

Invariants & Safety:
  - Duplicate addresses differing only in case are merged, summing counts.
  - Ranking is purely count based.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Protocol, Sequence

from .models import RawSource, Source


class SupportsTopSources(Protocol):
    def list_top_sources(self, limit: int) -> List[RawSource]:
        ...


def _tie_break(source: Source) -> tuple:
    return (-source.matching_count, source.key)


def _collapse(raw_sources: Iterable[RawSource]) -> List[Source]:
    """Merge case-variant duplicates, keeping the first spelling seen."""

    merged: Dict[str, Source] = {}
    for raw in raw_sources:
        source = Source.from_raw(raw)
        existing = merged.get(source.key)
        if existing is None:
            merged[source.key] = source
            continue
        merged[source.key] = Source(
            address=existing.address,
            display_name=existing.display_name or source.display_name,
            matching_count=existing.matching_count + source.matching_count,
        )
    return list(merged.values())


def rank(raw_sources: Iterable[RawSource]) -> List[Source]:
    """Order senders by descending count, ties by lower-cased address."""

    return sorted(_collapse(raw_sources), key=_tie_break)


def rerank(previous: Sequence[Source], raw_sources: Iterable[RawSource]) -> List[Source]:
    """Re-rank fresh aggregates while preserving the previous relative order.

    What:
      Produce the same ordering :func:`rank` would, except that senders with
      equal counts keep the order they had in ``previous``.

    How:
      Build the candidate list in ``previous`` order (skipping senders that
      disappeared), append unseen senders in :func:`rank` order, then
      ``sorted`` on descending count, which Python guarantees to be stable.
    """

    fresh = {source.key: source for source in _collapse(raw_sources)}
    ordered: List[Source] = []
    for old in previous:
        current = fresh.pop(old.key, None)
        if current is not None:
            ordered.append(current)
    ordered.extend(sorted(fresh.values(), key=_tie_break))
    return sorted(ordered, key=lambda source: -source.matching_count)


def update_counts(
    previous: Sequence[Source],
    raw_sources: Iterable[RawSource],
    *,
    complete: bool,
) -> List[Source]:
    """Refresh counts in place without reordering ``previous``.

    What:
      Used while a walk is in progress: positions are frozen, only
      ``matching_count`` moves.

    Args:
      previous: The list being walked.
      raw_sources: Fresh aggregates from the gateway.
      complete: ``True`` when the gateway returned fewer rows than requested,
        so an absent sender genuinely has no matching mail left. Otherwise an
        absent sender merely dropped out of the top-N window and keeps its last
        known count.
    """

    fresh = {source.key: source for source in _collapse(raw_sources)}
    updated: List[Source] = []
    for old in previous:
        current = fresh.get(old.key)
        if current is not None:
            updated.append(
                Source(
                    address=old.address,
                    display_name=old.display_name or current.display_name,
                    matching_count=current.matching_count,
                )
            )
        elif complete:
            updated.append(Source(address=old.address, display_name=old.display_name, matching_count=0))
        else:
            updated.append(old)
    return updated


def total_matching(sources: Iterable[Source]) -> int:
    """Sum of matching counts across ``sources``."""

    return sum(source.matching_count for source in sources)


class SourceRanking:
    """Gateway-backed ranking helper.

    What:
      Fetches the top ``limit`` senders and ranks them, or refreshes an
      existing ranking.
    """

    def __init__(self, gateway: SupportsTopSources) -> None:
        self._gateway = gateway

    def fetch(self, limit: int) -> List[Source]:
        return rank(self._gateway.list_top_sources(limit))

    def refresh(
        self,
        previous: Sequence[Source],
        limit: int,
        *,
        frozen: bool = False,
        raw: Optional[List[RawSource]] = None,
    ) -> List[Source]:
        """Re-fetch and re-rank, or only update counts when ``frozen``."""

        if raw is None:
            raw = self._gateway.list_top_sources(limit)
        if frozen:
            return update_counts(previous, raw, complete=len(raw) < limit)
        return rerank(previous, raw)
