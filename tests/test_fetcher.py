import threading

import pytest

from shortsync.core.errors import DomainNotFound, UpstreamError
from shortsync.core.fetcher import PAGE_SIZE, DomainCache, LinkFetcher, normalize_link
from shortsync.core.shortio_client import LinkPage, ShortioApiError, ShortioDomain


class _FakeSource:
    """In-memory LinkSource: pages are served `page_size` at a time with numeric tokens."""

    def __init__(self, domains, links_by_id, *, fail_domains=False, fail_page=None):
        self.domains = domains
        self.links_by_id = links_by_id
        self.fail_domains = fail_domains
        self.fail_page = fail_page
        self.calls = {"domains": 0, "links": []}
        self._lock = threading.Lock()

    def list_domains(self):
        with self._lock:
            self.calls["domains"] += 1
        if self.fail_domains:
            raise ShortioApiError("Unauthorized (HTTP 401)", status_code=401)
        return list(self.domains)

    def list_links(self, domain_id, limit, page_token=None):
        with self._lock:
            self.calls["links"].append((domain_id, limit, page_token))
        start = int(page_token or 0)
        if self.fail_page is not None and start // limit == self.fail_page:
            raise ShortioApiError("Internal error (HTTP 500)", status_code=500)
        items = self.links_by_id.get(domain_id, [])
        chunk = items[start:start + limit]
        nxt = str(start + limit) if start + limit < len(items) else None
        return LinkPage(links=chunk, next_page_token=nxt)


def _raw(i, **extra):
    item = {"idString": f"lnk_{i}", "path": f"p{i}", "originalURL": f"https://e.example/{i}", "tags": []}
    item.update(extra)
    return item


DOMAINS = [ShortioDomain(1, "a.io"), ShortioDomain(2, "b.io")]


def test_domain_ids_are_cached_across_calls():
    src = _FakeSource(DOMAINS, {1: [_raw(1)], 2: [_raw(2)]})
    f = LinkFetcher(src)
    f.fetch_all("a.io")
    f.fetch_all("a.io")
    f.fetch_all("b.io")
    # a single listing populated both domains
    assert src.calls["domains"] == 1
    assert "b.io" in f.cache and len(f.cache) == 2


def test_reset_forgets_cached_ids():
    src = _FakeSource(DOMAINS, {})
    f = LinkFetcher(src)
    f.resolve_domain_id("a.io")
    f.reset()
    assert len(f.cache) == 0
    f.resolve_domain_id("a.io")
    assert src.calls["domains"] == 2


def test_separate_fetchers_do_not_share_cache():
    src = _FakeSource(DOMAINS, {})
    LinkFetcher(src).resolve_domain_id("a.io")
    LinkFetcher(src).resolve_domain_id("a.io")
    assert src.calls["domains"] == 2


def test_shared_cache_is_honoured():
    cache = DomainCache()
    cache.update([ShortioDomain(9, "pre.io")])
    src = _FakeSource(DOMAINS, {9: []})
    assert LinkFetcher(src, cache=cache).fetch_all("pre.io") == []
    assert src.calls["domains"] == 0


def test_unknown_domain_raises_domain_not_found():
    src = _FakeSource(DOMAINS, {})
    with pytest.raises(DomainNotFound) as ei:
        LinkFetcher(src).fetch_all("missing.io")
    assert "Domain not found: missing.io" in str(ei.value)
    assert src.calls["links"] == []


def test_domain_listing_failure_is_upstream_error():
    src = _FakeSource(DOMAINS, {}, fail_domains=True)
    with pytest.raises(UpstreamError) as ei:
        LinkFetcher(src).fetch_all("a.io")
    assert "Failed to fetch domains" in str(ei.value)
    assert "HTTP 401" in str(ei.value)


def test_pagination_follows_continuation_tokens():
    items = [_raw(i) for i in range(PAGE_SIZE * 2 + 10)]
    src = _FakeSource(DOMAINS, {1: items})
    links = LinkFetcher(src).fetch_all("a.io")

    assert len(links) == len(items)
    assert [c[2] for c in src.calls["links"]] == [None, "150", "300"]
    assert all(c[1] == PAGE_SIZE for c in src.calls["links"])
    # service order is preserved
    assert [link.slug for link in links[:3]] == ["p0", "p1", "p2"]


def test_single_page_when_no_token():
    src = _FakeSource(DOMAINS, {1: [_raw(1), _raw(2)]})
    assert len(LinkFetcher(src).fetch_all("a.io")) == 2
    assert len(src.calls["links"]) == 1


def test_failed_page_discards_partial_results():
    items = [_raw(i) for i in range(PAGE_SIZE + 5)]
    src = _FakeSource(DOMAINS, {1: items}, fail_page=1)
    with pytest.raises(UpstreamError) as ei:
        LinkFetcher(src).fetch_all("a.io")
    assert "Failed to fetch links for domain a.io" in str(ei.value)


def test_links_are_stamped_with_requested_domain():
    src = _FakeSource(DOMAINS, {2: [_raw(1)]})
    (link,) = LinkFetcher(src).fetch_all("b.io")
    assert link.domain == "b.io" and link.domain_id == 2
    assert link.key == "b.io/p1"
    assert link.id == "lnk_1"


def test_normalize_link_maps_attributes():
    item = _raw(3, title="T", tags=["x", "managed"], redirectType="301", cloaking=False, expiresAt=None)
    link = normalize_link(item, domain="a.io", domain_id=1)
    assert link.title == "T"
    assert link.tags == ("x", "managed")
    assert link.attributes == {"redirectType": 301, "cloaking": False}


def test_normalize_link_without_tags():
    item = {"idString": "z", "path": "p", "originalURL": "https://x"}
    link = normalize_link(item, domain="a.io", domain_id=1)
    assert link.tags is None and link.title is None and link.attributes == {}


def test_fetch_many_parallel_resolves_domains_once():
    src = _FakeSource(DOMAINS, {1: [_raw(1)], 2: [_raw(2), _raw(3)]})
    f = LinkFetcher(src, max_workers=4)
    out = f.fetch_many(["a.io", "b.io", "a.io"])
    assert list(out) == ["a.io", "b.io"]
    assert len(out["a.io"]) == 1 and len(out["b.io"]) == 2
    assert src.calls["domains"] == 1


def test_fetch_many_propagates_first_failure():
    src = _FakeSource(DOMAINS, {1: [], 2: []})
    with pytest.raises(DomainNotFound):
        LinkFetcher(src, max_workers=2).fetch_many(["a.io", "nope.io"])


def test_fetch_many_logs_progress(caplog):
    src = _FakeSource(DOMAINS, {1: [_raw(1)]})
    with caplog.at_level("INFO", logger="shortsync.fetch"):
        LinkFetcher(src).fetch_many(["a.io"])
    assert "Fetching existing links for domain: a.io" in caplog.text
    assert "Found 1 existing links for a.io" in caplog.text
