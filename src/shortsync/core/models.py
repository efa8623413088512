"""
Data model for link reconciliation.

DesiredLink comes from the links file, ObservedLink from the Short.io API.
Both are joined on `link_key(domain, slug)`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

MANAGED_TAG = "managed"

# YAML key -> Short.io API field. Drives loading, normalization, comparison
# and request building, so a new attribute only needs a line here.
EXTENDED_ATTRIBUTES: Dict[str, str] = {
    "cloaking": "cloaking",
    "redirect_type": "redirectType",
    "expires_at": "expiresAt",
    "expired_url": "expiredURL",
    "password": "password",
    "password_contact": "passwordContact",
    "utm_source": "utmSource",
    "utm_medium": "utmMedium",
    "utm_campaign": "utmCampaign",
    "utm_term": "utmTerm",
    "utm_content": "utmContent",
    "android_url": "androidURL",
    "iphone_url": "iphoneURL",
    "clicks_limit": "clicksLimit",
    "split_url": "splitURL",
    "split_percent": "splitPercent",
    "integration_ga": "integrationGA",
    "integration_fb": "integrationFB",
    "integration_adroll": "integrationAdroll",
    "integration_gtm": "integrationGTM",
    "folder_id": "FolderId",
    "archived": "archived",
    "skip_qs": "skipQS",
}


def link_key(domain: str, slug: str) -> str:
    """Identity key of a link. Domains never contain '/', so the split is unambiguous."""
    return f"{domain}/{slug}"


def unique_domains(links: Iterable["DesiredLink"]) -> List[str]:
    """Domains referenced by `links`, in first-seen order."""
    return list(dict.fromkeys(link.domain for link in links))


@dataclass(frozen=True)
class DesiredLink:
    """A link as declared in the links file."""
    domain: str
    slug: str
    url: str
    title: Optional[str] = None
    tags: Optional[Tuple[str, ...]] = None
    attributes: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return link_key(self.domain, self.slug)


@dataclass(frozen=True)
class ObservedLink:
    """A link as returned by Short.io, stamped with the domain it was listed under."""
    id: str
    domain: str
    slug: str
    url: str
    domain_id: int
    title: Optional[str] = None
    tags: Optional[Tuple[str, ...]] = None
    attributes: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return link_key(self.domain, self.slug)


@dataclass(frozen=True)
class LinkUpdate:
    desired: DesiredLink
    existing: ObservedLink


@dataclass
class LinkDiff:
    """Classified changes for one run. Unchanged links are not listed."""
    to_create: List[DesiredLink] = field(default_factory=list)
    to_update: List[LinkUpdate] = field(default_factory=list)
    to_delete: List[ObservedLink] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.to_create) + len(self.to_update) + len(self.to_delete)

    @property
    def is_empty(self) -> bool:
        return len(self) == 0


@dataclass
class SyncResult:
    created: int = 0
    updated: int = 0
    deleted: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors
