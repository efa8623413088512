"""
Sync executor: applies a LinkDiff to Short.io.

Lifecycle:
  creates -> updates -> deletes

- Item-level isolation: one failing link never aborts the run; the failure
  is recorded in SyncResult.errors as "Failed to <op> <key>: <detail>".
- Dry-run: nothing is sent, each intended change is logged and counted.
- Every created or updated link gets the management marker tag.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Union

from .differ import changed_fields
from .errors import OperationError
from .models import MANAGED_TAG, DesiredLink, LinkDiff, LinkUpdate, ObservedLink, SyncResult
from .shortio_client import ShortioApiError

Logger = Union[logging.Logger, logging.LoggerAdapter]


class LinkWriter(Protocol):
    """Write side of the remote client."""

    def create_link(self, payload: Dict[str, Any]) -> Dict[str, Any]: ...

    def update_link(self, link_id: str, payload: Dict[str, Any]) -> Dict[str, Any]: ...

    def delete_link(self, link_id: str) -> None: ...


def with_marker(tags: Optional[Sequence[str]], managed_tag: str = MANAGED_TAG) -> List[str]:
    """Desired tags plus the marker, added once and after the user's own tags."""
    merged = list(tags or ())
    if managed_tag not in merged:
        merged.append(managed_tag)
    return merged


def build_create_payload(link: DesiredLink, managed_tag: str = MANAGED_TAG) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "originalURL": link.url,
        "domain": link.domain,
        "path": link.slug,
        "tags": with_marker(link.tags, managed_tag),
    }
    if link.title:
        payload["title"] = link.title
    payload.update(link.attributes)
    return payload


def build_update_payload(link: DesiredLink, managed_tag: str = MANAGED_TAG) -> Dict[str, Any]:
    # title "" clears a title removed from the links file
    payload: Dict[str, Any] = {
        "originalURL": link.url,
        "title": link.title or "",
        "tags": with_marker(link.tags, managed_tag),
    }
    payload.update(link.attributes)
    return payload


def _fmt_value(value: Any) -> str:
    if value is None or value == "":
        return "(none)"
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(str(v) for v in value) + "]"
    return str(value)


class SyncExecutor:
    """Applies a diff through a :class:`LinkWriter`.

    Args:
        client: Remote client (normally ShortioClient).
        managed_tag: Management marker added to created/updated links.
        logger: Optional logger or adapter.
    """

    def __init__(
        self,
        client: LinkWriter,
        *,
        managed_tag: str = MANAGED_TAG,
        logger: Optional[Logger] = None,
    ) -> None:
        self.client = client
        self.managed_tag = managed_tag
        self.log = logger or logging.getLogger("shortsync.sync")

    def execute(self, diff: LinkDiff, dry_run: bool = False) -> SyncResult:
        result = SyncResult()

        if diff.to_create:
            self.log.info("Creating %d links...", len(diff.to_create))
            for link in diff.to_create:
                self._create(link, dry_run, result)

        if diff.to_update:
            self.log.info("Updating %d links...", len(diff.to_update))
            for change in diff.to_update:
                self._update(change, dry_run, result)

        if diff.to_delete:
            self.log.info("Deleting %d links...", len(diff.to_delete))
            for link in diff.to_delete:
                self._delete(link, dry_run, result)

        return result

    # ----- phases -----------------------------------------------------------
    def _create(self, link: DesiredLink, dry_run: bool, result: SyncResult) -> None:
        if dry_run:
            self.log.info("[DRY RUN] Would create: %s -> %s", link.key, link.url)
            result.created += 1
            return
        payload = build_create_payload(link, self.managed_tag)
        if self._attempt("create", link.key, lambda: self.client.create_link(payload), result):
            self.log.info("Created: %s", link.key)
            result.created += 1

    def _update(self, change: LinkUpdate, dry_run: bool, result: SyncResult) -> None:
        link, existing = change.desired, change.existing
        if dry_run:
            self.log.info("[DRY RUN] Would update: %s", link.key)
            for label, before, after in changed_fields(link, existing, self.managed_tag):
                self.log.info("  %s: %s -> %s", label, _fmt_value(before), _fmt_value(after))
            result.updated += 1
            return
        payload = build_update_payload(link, self.managed_tag)
        if self._attempt("update", link.key, lambda: self.client.update_link(existing.id, payload), result):
            self.log.info("Updated: %s", link.key)
            result.updated += 1

    def _delete(self, link: ObservedLink, dry_run: bool, result: SyncResult) -> None:
        if dry_run:
            self.log.info("[DRY RUN] Would delete: %s", link.key)
            result.deleted += 1
            return
        if self._attempt("delete", link.key, lambda: self.client.delete_link(link.id), result):
            self.log.info("Deleted: %s", link.key)
            result.deleted += 1

    def _attempt(self, operation: str, key: str, call: Callable[[], Any], result: SyncResult) -> bool:
        try:
            call()
        except ShortioApiError as exc:
            err = OperationError(operation, key, str(exc))
        except Exception as exc:
            self.log.exception("Unexpected error during %s of %s", operation, key)
            err = OperationError(operation, key, str(exc) or type(exc).__name__)
        else:
            return True
        self.log.error("%s", err)
        result.errors.append(str(err))
        return False


def execute_sync(
    diff: LinkDiff,
    client: LinkWriter,
    dry_run: bool = False,
    *,
    managed_tag: str = MANAGED_TAG,
    logger: Optional[Logger] = None,
) -> SyncResult:
    """Functional entry point around :class:`SyncExecutor`."""
    return SyncExecutor(client, managed_tag=managed_tag, logger=logger).execute(diff, dry_run)
