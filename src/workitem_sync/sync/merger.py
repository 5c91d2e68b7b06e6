"""Field-level and text-level merge helpers for conflict resolution.

Uses the ``merge3`` library (the algorithm used by Bazaar/Breezy) for
line-based three-way merges of long text fields such as
``System.Description``.
"""

from __future__ import annotations

from typing import Any

from merge3 import Merge3

_MISSING = object()


def merge_fields(
    remote_fields: dict[str, Any],
    local_fields: dict[str, Any],
    local_changes: frozenset[str] | set[str],
) -> dict[str, Any]:
    """Overlay the locally changed fields onto the remote field set.

    Field order follows the remote; fields added locally are appended.
    A field removed locally is removed from the result.
    """
    merged = dict(remote_fields)
    for name in sorted(local_changes):
        value = local_fields.get(name, _MISSING)
        if value is _MISSING:
            merged.pop(name, None)
        else:
            merged[name] = value
    return merged


def attempt_text_merge(
    base_content: str,
    local_content: str,
    remote_content: str,
) -> tuple[str, bool]:
    """Three-way merge two edits of a text value against their base.

    Returns:
        ``(merged_text, has_conflicts)``; *merged_text* carries
        ``<<<<<<< LOCAL`` / ``>>>>>>> REMOTE`` markers when
        *has_conflicts* is ``True``.
    """
    m3 = Merge3(
        base_content.splitlines(True),
        local_content.splitlines(True),
        remote_content.splitlines(True),
    )
    merged_text = "".join(
        m3.merge_lines(
            name_a="LOCAL",
            name_b="REMOTE",
            start_marker="<<<<<<< LOCAL",
            mid_marker="=======",
            end_marker=">>>>>>> REMOTE",
        )
    )
    return merged_text, "<<<<<<< LOCAL" in merged_text
