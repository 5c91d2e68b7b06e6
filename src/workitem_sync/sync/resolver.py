"""Conflict resolution strategies for the sync engine.

- ``FieldMergeResolver`` (default): merges edits that touch disjoint field
  sets; flags overlapping edits for manual action.
- ``TextMergeResolver``: like field-merge, but also line-merges overlapping
  text fields when the merge is clean.
- ``LocalWinsResolver`` / ``RemoteWinsResolver``: always pick one side.

No resolver ever silently drops an edit: a ``manual`` resolution keeps
the base, local and remote field sets for the caller to display.

The ``create_resolver()`` factory maps config strategy strings to resolver
instances.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from workitem_sync.sync.merger import attempt_text_merge, merge_fields
from workitem_sync.sync.models import (
    Classification,
    ConflictResolution,
    ReconciliationOutcome,
    ResolutionStrategy,
)

logger = logging.getLogger(__name__)

_MISSING = object()


class ConflictResolver(Protocol):
    """Protocol that all conflict resolvers must satisfy."""

    def resolve(self, outcome: ReconciliationOutcome) -> ConflictResolution:
        """Decide how to resolve a ``conflict`` outcome."""
        ...  # pragma: no cover


def _sides(
    outcome: ReconciliationOutcome,
) -> tuple[dict[str, Any], dict[str, Any], dict[str, Any]]:
    if outcome.classification != Classification.CONFLICT:
        raise ValueError(
            f"Cannot resolve {outcome.classification.value} outcome for #{outcome.item_id}"
        )
    local = outcome.local_record
    remote = outcome.remote_record
    if local is None or remote is None:
        raise ValueError(
            f"Conflict on #{outcome.item_id} needs both a local and a remote copy"
        )
    return dict(local.baseline), dict(local.fields), dict(remote.fields)


def overlapping_fields(outcome: ReconciliationOutcome) -> list[str]:
    """Fields changed on both sides to different values."""
    _, local, remote = _sides(outcome)
    both = outcome.local_changes & outcome.remote_changes
    return sorted(
        name
        for name in both
        if local.get(name, _MISSING) != remote.get(name, _MISSING)
    )


def _manual(
    outcome: ReconciliationOutcome, overlap: list[str]
) -> ConflictResolution:
    base, local, remote = _sides(outcome)
    logger.info(
        "Conflict on %s #%s needs manual action (fields: %s)",
        outcome.item_type,
        outcome.item_id,
        ", ".join(overlap),
    )
    return ConflictResolution(
        item_id=outcome.item_id,
        item_type=outcome.item_type,
        strategy=ResolutionStrategy.MANUAL,
        resolved_fields=None,
        requires_manual_action=True,
        base_fields=base,
        local_fields=local,
        remote_fields=remote,
        overlapping_fields=overlap,
    )


class FieldMergeResolver:
    """Auto-merge field-disjoint edits; defer overlapping ones to a human."""

    def resolve(self, outcome: ReconciliationOutcome) -> ConflictResolution:
        base, local, remote = _sides(outcome)
        overlap = overlapping_fields(outcome)
        if overlap:
            return _manual(outcome, overlap)

        logger.info(
            "Auto-merged %s #%s (local: %s; remote: %s)",
            outcome.item_type,
            outcome.item_id,
            ", ".join(sorted(outcome.local_changes)),
            ", ".join(sorted(outcome.remote_changes)),
        )
        return ConflictResolution(
            item_id=outcome.item_id,
            item_type=outcome.item_type,
            strategy=ResolutionStrategy.MERGE,
            resolved_fields=merge_fields(
                remote, local, outcome.local_changes
            ),
            base_fields=base,
            local_fields=local,
            remote_fields=remote,
        )


class TextMergeResolver:
    """Field-merge plus clean line merges of overlapping text fields."""

    def resolve(self, outcome: ReconciliationOutcome) -> ConflictResolution:
        base, local, remote = _sides(outcome)
        overlap = overlapping_fields(outcome)

        merged_text: dict[str, str] = {}
        unresolved: list[str] = []
        for name in overlap:
            versions = (base.get(name), local.get(name), remote.get(name))
            if not all(isinstance(v, str) for v in versions):
                unresolved.append(name)
                continue
            text, has_conflicts = attempt_text_merge(*versions)  # type: ignore[arg-type]
            if has_conflicts:
                unresolved.append(name)
            else:
                merged_text[name] = text

        if unresolved:
            return _manual(outcome, unresolved)

        resolved = merge_fields(remote, local, outcome.local_changes)
        resolved.update(merged_text)
        return ConflictResolution(
            item_id=outcome.item_id,
            item_type=outcome.item_type,
            strategy=ResolutionStrategy.MERGE,
            resolved_fields=resolved,
            base_fields=base,
            local_fields=local,
            remote_fields=remote,
            overlapping_fields=overlap,
        )


class LocalWinsResolver:
    """Always resolve conflicts in favour of the local fields."""

    def resolve(self, outcome: ReconciliationOutcome) -> ConflictResolution:
        base, local, remote = _sides(outcome)
        return ConflictResolution(
            item_id=outcome.item_id,
            item_type=outcome.item_type,
            strategy=ResolutionStrategy.LOCAL_WINS,
            resolved_fields=local,
            base_fields=base,
            local_fields=local,
            remote_fields=remote,
            overlapping_fields=overlapping_fields(outcome),
        )


class RemoteWinsResolver:
    """Always resolve conflicts in favour of the remote fields."""

    def resolve(self, outcome: ReconciliationOutcome) -> ConflictResolution:
        base, local, remote = _sides(outcome)
        return ConflictResolution(
            item_id=outcome.item_id,
            item_type=outcome.item_type,
            strategy=ResolutionStrategy.REMOTE_WINS,
            resolved_fields=remote,
            base_fields=base,
            local_fields=local,
            remote_fields=remote,
            overlapping_fields=overlapping_fields(outcome),
        )


_STRATEGY_MAP: dict[str, type] = {
    "field-merge": FieldMergeResolver,
    "text-merge": TextMergeResolver,
    "local-wins": LocalWinsResolver,
    "remote-wins": RemoteWinsResolver,
}


def create_resolver(strategy: str) -> ConflictResolver:
    """Create a conflict resolver for the given strategy string.

    Args:
        strategy: One of ``"field-merge"``, ``"text-merge"``,
            ``"local-wins"``, ``"remote-wins"``.

    Raises:
        ValueError: If the strategy string is not recognised.
    """
    cls = _STRATEGY_MAP.get(strategy)
    if cls is None:
        raise ValueError(
            f"Unknown conflict strategy: '{strategy}'. Valid strategies: {sorted(_STRATEGY_MAP.keys())}"
        )
    return cls()  # type: ignore[return-value]
