"""
Diff engine for shortsync.

Compares desired links against observed links (joined on the identity key)
and classifies each key as create, update or delete. Unchanged links are
left out of the diff.

Comparison rules:
  * url: strict equality
  * title: missing and "" are the same value
  * tags: order-independent; missing equals empty; the management marker
    is ignored on the observed side
  * extended attributes: compared when the desired link declares them

Deletion is limited to observed links carrying the management marker.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from .models import (
    MANAGED_TAG,
    DesiredLink,
    LinkDiff,
    LinkUpdate,
    ObservedLink,
    unique_domains,
)

if TYPE_CHECKING:
    from .fetcher import LinkFetcher

FieldChange = Tuple[str, Any, Any]


def is_managed(link: ObservedLink, managed_tag: str = MANAGED_TAG) -> bool:
    """True when the link carries the management marker (i.e. this tool owns it)."""
    return managed_tag in (link.tags or ())


def _norm_title(title: Optional[str]) -> str:
    return title or ""


def _norm_tags(tags: Optional[Sequence[str]], drop: Optional[str] = None) -> List[str]:
    return sorted(t for t in (tags or ()) if t != drop)


def changed_fields(
    desired: DesiredLink,
    existing: ObservedLink,
    managed_tag: str = MANAGED_TAG,
) -> List[FieldChange]:
    """Return `(label, before, after)` for every compared field that differs."""
    changes: List[FieldChange] = []
    if desired.url != existing.url:
        changes.append(("URL", existing.url, desired.url))
    if _norm_title(desired.title) != _norm_title(existing.title):
        changes.append(("Title", existing.title, desired.title))
    if _norm_tags(desired.tags, managed_tag) != _norm_tags(existing.tags, managed_tag):
        changes.append(("Tags", list(existing.tags or ()), list(desired.tags or ())))
    for api_name, wanted in desired.attributes.items():
        current = existing.attributes.get(api_name)
        if wanted != current:
            changes.append((api_name, current, wanted))
    return changes


def needs_update(desired: DesiredLink, existing: ObservedLink, managed_tag: str = MANAGED_TAG) -> bool:
    return bool(changed_fields(desired, existing, managed_tag))


def compute_diff(
    desired: Iterable[DesiredLink],
    observed_by_domain: Mapping[str, Sequence[ObservedLink]],
    *,
    managed_tag: str = MANAGED_TAG,
) -> LinkDiff:
    """Classify desired vs observed links.

    Args:
        desired: Duplicate-free desired links.
        observed_by_domain: Observed links grouped per domain.
        managed_tag: Management marker restricting deletions.

    Returns:
        A :class:`LinkDiff`; ordering follows the desired/observed input order.
    """
    observed_index = {
        link.key: link
        for links in observed_by_domain.values()
        for link in links
    }
    desired_index = {link.key: link for link in desired}

    diff = LinkDiff()
    for key, wanted in desired_index.items():
        existing = observed_index.get(key)
        if existing is None:
            diff.to_create.append(wanted)
        elif needs_update(wanted, existing, managed_tag):
            diff.to_update.append(LinkUpdate(desired=wanted, existing=existing))

    for key, existing in observed_index.items():
        if key in desired_index:
            continue
        # links created by hand (no marker) are never deleted
        if is_managed(existing, managed_tag):
            diff.to_delete.append(existing)

    return diff


def plan(
    desired: Iterable[DesiredLink],
    fetcher: "LinkFetcher",
    *,
    managed_tag: str = MANAGED_TAG,
) -> LinkDiff:
    """Fetch observed state for every desired domain, then diff.

    DomainNotFound / UpstreamError from the fetcher propagate: a partial
    observed set must never be diffed.
    """
    desired = list(desired)
    observed = fetcher.fetch_many(unique_domains(desired))
    return compute_diff(desired, observed, managed_tag=managed_tag)
