"""
Links file loader: YAML -> list of DesiredLink.

File format (one or more YAML documents separated by `---`):

    domain: short.example          # optional default for this document
    links:
      docs:                        # slug
        url: https://docs.example.com
        title: Documentation       # optional
        tags: [docs, public]       # optional
        domain: other.example      # optional per-link override
        redirect_type: 301         # optional extended attribute

Rules:
  * every link needs a url (absolute http/https) and a domain
  * domain/slug must be unique across the whole file
  * unknown keys are rejected so typos do not silently drop settings
"""
from __future__ import annotations

from collections.abc import Hashable
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple
from urllib.parse import urlparse

import yaml

from .errors import ConfigError
from .models import EXTENDED_ATTRIBUTES, DesiredLink, unique_domains

__all__ = ["load_links", "parse_documents", "describe"]

_BASE_FIELDS = {"url", "domain", "title", "tags"}
_BOOL_ATTRS = {"cloaking", "archived", "skip_qs", "integration_ga", "integration_fb",
               "integration_adroll", "integration_gtm"}
_INT_ATTRS = {"clicks_limit", "split_percent"}
_STR_ATTRS = {"password", "password_contact", "utm_source", "utm_medium", "utm_campaign",
              "utm_term", "utm_content", "folder_id"}
_REDIRECT_TYPES = {301, 302, 307, 308}


class _LinksLoader(yaml.SafeLoader):
    """SafeLoader that keeps non-string scalar keys as written.

    Slugs are mapping keys, and YAML 1.1 would resolve `010:` to 8, `yes:` to
    True and `1_000:` to 1000 before the loader could see the original text.
    """

    def construct_mapping(self, node, deep=False):
        if isinstance(node, yaml.MappingNode):
            self.flatten_mapping(node)
        if not isinstance(node, yaml.MappingNode):
            raise yaml.constructor.ConstructorError(
                None, None, f"expected a mapping node, but found {node.id}", node.start_mark
            )
        mapping = {}
        for key_node, value_node in node.value:
            key = self.construct_object(key_node, deep=deep)
            if isinstance(key_node, yaml.ScalarNode) and key is not None and not isinstance(key, str):
                key = key_node.value
            if not isinstance(key, Hashable):
                raise yaml.constructor.ConstructorError(
                    "while constructing a mapping", node.start_mark, "found unhashable key", key_node.start_mark
                )
            mapping[key] = self.construct_object(value_node, deep=deep)
        return mapping


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _check_domain(domain: Any, where: str) -> str:
    if not isinstance(domain, str) or not domain.strip():
        raise ConfigError(f'{where} "domain" must be a non-empty string')
    if "/" in domain:
        raise ConfigError(f'{where} "domain" must be a hostname without "/": {domain}')
    return domain.strip()


def _expiry(slug: str, value: Any) -> Any:
    # unquoted dates load as date/datetime objects; the API takes ISO strings or epoch millis
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise ConfigError(f'Link "{slug}" "expires_at" must be a date string or a timestamp')
    return value


def _parse_attributes(slug: str, raw: Dict[str, Any]) -> Dict[str, Any]:
    attrs: Dict[str, Any] = {}
    for name, value in raw.items():
        if name in _BASE_FIELDS:
            continue
        api_name = EXTENDED_ATTRIBUTES.get(name)
        if api_name is None:
            raise ConfigError(f'Link "{slug}" has unknown field "{name}"')
        if value is None:
            continue
        if name in _BOOL_ATTRS and not isinstance(value, bool):
            raise ConfigError(f'Link "{slug}" "{name}" must be a boolean')
        if name in _INT_ATTRS and (isinstance(value, bool) or not isinstance(value, int)):
            raise ConfigError(f'Link "{slug}" "{name}" must be an integer')
        if name in _STR_ATTRS and not isinstance(value, str):
            raise ConfigError(f'Link "{slug}" "{name}" must be a string')
        if name == "expires_at":
            value = _expiry(slug, value)
        if name == "split_percent" and not 1 <= value <= 100:
            raise ConfigError(f'Link "{slug}" "split_percent" must be between 1 and 100')
        if name == "redirect_type" and value not in _REDIRECT_TYPES:
            raise ConfigError(
                f'Link "{slug}" "redirect_type" must be one of {sorted(_REDIRECT_TYPES)}'
            )
        if name.endswith("_url") and not (isinstance(value, str) and _is_http_url(value)):
            raise ConfigError(f'Link "{slug}" has invalid URL in "{name}": {value}')
        attrs[api_name] = value
    return attrs


def _parse_link(slug: str, raw: Any, default_domain: Optional[str]) -> DesiredLink:
    if not isinstance(raw, dict):
        raise ConfigError(f'Link "{slug}" must be a mapping')

    url = raw.get("url")
    if not isinstance(url, str) or not url.strip():
        raise ConfigError(f'Link "{slug}" must have a non-empty "url" string')
    if not _is_http_url(url.strip()):
        raise ConfigError(f'Link "{slug}" has invalid URL: {url}')

    if raw.get("domain") is not None:
        domain = _check_domain(raw["domain"], f'Link "{slug}"')
    elif default_domain:
        domain = default_domain
    else:
        raise ConfigError(f'Link "{slug}" must have a "domain" (or set top-level "domain")')

    title = raw.get("title")
    if title is not None and not isinstance(title, str):
        raise ConfigError(f'Link "{slug}" "title" must be a string')

    tags = raw.get("tags")
    if tags is not None:
        if not isinstance(tags, list):
            raise ConfigError(f'Link "{slug}" "tags" must be a list')
        if not all(isinstance(t, str) for t in tags):
            raise ConfigError(f'Link "{slug}" tags must all be strings')
        # the service stores a tag set
        tags = tuple(dict.fromkeys(tags))

    return DesiredLink(
        domain=domain,
        slug=slug,
        url=url.strip(),
        title=title,
        tags=tags,
        attributes=_parse_attributes(slug, raw),
    )


def _parse_document(doc: Any, index: int) -> List[DesiredLink]:
    if not isinstance(doc, dict):
        raise ConfigError("Config must be an object" if index == 0 else f"Document {index + 1} must be an object")

    default_domain = None
    if doc.get("domain") is not None:
        default_domain = _check_domain(doc["domain"], f"Document {index + 1}")

    links = doc.get("links")
    if not isinstance(links, dict):
        raise ConfigError('Config must have a "links" map')

    out: List[DesiredLink] = []
    for slug, raw in links.items():
        # ints only come from Python callers; _LinksLoader keeps YAML keys as written
        slug_s = str(slug).strip() if slug is not None else ""
        if not slug_s:
            raise ConfigError(f"Document {index + 1} has a link with an empty slug")
        out.append(_parse_link(slug_s, raw, default_domain))
    return out


def parse_documents(documents: Iterable[Any]) -> List[DesiredLink]:
    """Validate already-parsed YAML documents and flatten them into links.

    Raises:
        ConfigError: On any invalid document or duplicate domain/slug.
    """
    docs = [d for d in documents if d is not None]
    if not docs:
        raise ConfigError("Config must be an object")

    links: List[DesiredLink] = []
    seen: Set[str] = set()
    for index, doc in enumerate(docs):
        for link in _parse_document(doc, index):
            if link.key in seen:
                raise ConfigError(f"Duplicate link: {link.key}")
            seen.add(link.key)
            links.append(link)
    return links


def load_links(path: str | Path) -> List[DesiredLink]:
    """Read and validate the links file at `path`."""
    p = Path(path)
    if not p.is_file():
        raise ConfigError(f"Config file not found: {p}")
    try:
        with p.open("r", encoding="utf-8") as fh:
            documents = list(yaml.load_all(fh, Loader=_LinksLoader))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {p}: {exc}") from exc
    return parse_documents(documents)


def describe(links: List[DesiredLink]) -> Tuple[int, int]:
    """(link count, domain count) for log lines."""
    return len(links), len(unique_domains(links))
