"""Human-readable rendering of a sync run."""

from __future__ import annotations

from .models import LinkDiff, SyncResult


def format_summary(result: SyncResult, dry_run: bool) -> str:
    prefix = "[DRY RUN] " if dry_run else ""
    lines = [
        f"{prefix}Sync completed:",
        f"  Created: {result.created}",
        f"  Updated: {result.updated}",
        f"  Deleted: {result.deleted}",
    ]
    if result.errors:
        lines.append(f"  Errors: {len(result.errors)}")
    return "\n".join(lines)


def format_plan(diff: LinkDiff) -> str:
    """One-line plan counts, logged before execution."""
    return (
        f"To create: {len(diff.to_create)} | "
        f"To update: {len(diff.to_update)} | "
        f"To delete: {len(diff.to_delete)}"
    )
