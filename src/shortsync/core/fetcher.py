"""
Observed-state fetcher: reads every link of a domain from Short.io.

- Domain hostnames are resolved to numeric ids through a DomainCache owned by
  the fetcher. A cache miss lists *all* domains once and caches them all.
- Links are paged (PAGE_SIZE per page) until the service stops returning a
  continuation token. A failed page discards everything fetched so far.
- Several domains can be fetched in parallel; the cache is lock-protected.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Optional, Protocol, Union

from .errors import DomainNotFound, UpstreamError
from .models import EXTENDED_ATTRIBUTES, ObservedLink
from .shortio_client import LinkPage, ShortioApiError, ShortioDomain

PAGE_SIZE = 150


class LinkSource(Protocol):
    """Read side of the remote client."""

    def list_domains(self) -> List[ShortioDomain]: ...

    def list_links(self, domain_id: int, limit: int, page_token: Optional[str] = None) -> LinkPage: ...


class DomainCache:
    """Thread-safe hostname -> domain id mapping, valid for one run (or until `clear`)."""

    def __init__(self) -> None:
        self._ids: Dict[str, int] = {}
        self._lock = threading.Lock()

    def get(self, hostname: str) -> Optional[int]:
        with self._lock:
            return self._ids.get(hostname)

    def update(self, domains: Iterable[ShortioDomain]) -> None:
        with self._lock:
            for d in domains:
                self._ids[d.hostname] = d.id

    def clear(self) -> None:
        with self._lock:
            self._ids.clear()

    def __contains__(self, hostname: object) -> bool:
        with self._lock:
            return hostname in self._ids

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)


def _as_tags(value: Any) -> Optional[tuple]:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return tuple(str(t) for t in value)
    return (str(value),)


def _coerce_attribute(api_name: str, value: Any) -> Any:
    # The API may return redirectType as a string ("301")
    if api_name == "redirectType" and isinstance(value, str) and value.isdigit():
        return int(value)
    return value


def normalize_link(item: Dict[str, Any], *, domain: str, domain_id: int) -> ObservedLink:
    """Map a raw Short.io link onto ObservedLink, stamping the request's domain."""
    attributes = {
        api_name: _coerce_attribute(api_name, item[api_name])
        for api_name in EXTENDED_ATTRIBUTES.values()
        if item.get(api_name) is not None
    }
    return ObservedLink(
        id=str(item.get("idString") or item.get("id") or ""),
        domain=domain,
        slug=str(item.get("path") or ""),
        url=str(item.get("originalURL") or ""),
        domain_id=domain_id,
        title=item.get("title"),
        tags=_as_tags(item.get("tags")),
        attributes=attributes,
    )


class LinkFetcher:
    """Fetches observed links per domain.

    Args:
        client: Anything implementing :class:`LinkSource` (normally ShortioClient).
        cache: Domain id cache; a fresh one is created when omitted.
        page_size: Page size ceiling for link listing.
        max_workers: Parallel domain fetches in `fetch_many` (1 = sequential).
    """

    def __init__(
        self,
        client: LinkSource,
        *,
        cache: Optional[DomainCache] = None,
        page_size: int = PAGE_SIZE,
        max_workers: int = 1,
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ) -> None:
        self.client = client
        self.cache = cache if cache is not None else DomainCache()
        self.page_size = int(page_size)
        self.max_workers = max(1, int(max_workers))
        self.log = logger or logging.getLogger("shortsync.fetch")
        self._resolve_lock = threading.Lock()

    def reset(self) -> None:
        """Forget every cached domain id."""
        self.cache.clear()

    def resolve_domain_id(self, domain: str) -> int:
        cached = self.cache.get(domain)
        if cached is not None:
            return cached

        # One listing per miss even when several workers miss at once
        with self._resolve_lock:
            if domain not in self.cache:
                try:
                    domains = self.client.list_domains()
                except ShortioApiError as exc:
                    raise UpstreamError("Failed to fetch domains", exc) from exc
                self.cache.update(domains)
                self.log.debug("Domain cache loaded: %d domain(s)", len(self.cache))

        resolved = self.cache.get(domain)
        if resolved is None:
            raise DomainNotFound(domain)
        return resolved

    def fetch_all(self, domain: str) -> List[ObservedLink]:
        domain_id = self.resolve_domain_id(domain)
        links: List[ObservedLink] = []
        page_token: Optional[str] = None
        pages = 0

        while True:
            try:
                page = self.client.list_links(domain_id, self.page_size, page_token)
            except ShortioApiError as exc:
                raise UpstreamError(f"Failed to fetch links for domain {domain}", exc) from exc
            pages += 1
            links.extend(normalize_link(item, domain=domain, domain_id=domain_id) for item in page.links)
            page_token = page.next_page_token
            if not page_token:
                break

        self.log.debug("Fetched %d link(s) for %s in %d page(s)", len(links), domain, pages)
        return links

    def fetch_many(self, domains: Iterable[str]) -> Dict[str, List[ObservedLink]]:
        """Fetch several domains. The first failure aborts the whole call."""
        ordered = list(dict.fromkeys(domains))
        if self.max_workers == 1 or len(ordered) <= 1:
            return {d: self._fetch_logged(d) for d in ordered}

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(ordered))) as pool:
            futures = {d: pool.submit(self._fetch_logged, d) for d in ordered}
            # .result() re-raises the worker's DomainNotFound / UpstreamError
            return {d: futures[d].result() for d in ordered}

    def _fetch_logged(self, domain: str) -> List[ObservedLink]:
        self.log.info("Fetching existing links for domain: %s", domain)
        links = self.fetch_all(domain)
        self.log.info("Found %d existing links for %s", len(links), domain)
        return links
