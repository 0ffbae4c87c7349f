"""Mirror naming scheme.

The title prefix "<owner> - OOO: " is the only link between a mirrored event and
the source event it copies; there is no persisted id mapping. Renaming the
source event therefore produces a new mirror and orphans the old one, which the
cleanup pass then removes.
"""

from __future__ import annotations

from ..models import MirrorDraft, SourceEvent

__all__ = [
    "build_mirror_draft",
    "is_mirror_of",
    "mirror_description",
    "mirror_prefix",
    "mirror_title",
    "original_title_from",
]

_SEPARATOR = " - OOO: "


def mirror_prefix(owner: str) -> str:
    return f"{owner}{_SEPARATOR}"


def mirror_title(owner: str, title: str) -> str:
    return f"{mirror_prefix(owner)}{title}"


def is_mirror_of(candidate: str | None, owner: str) -> bool:
    if not candidate:
        return False
    return candidate.startswith(mirror_prefix(owner))


def original_title_from(candidate: str, owner: str) -> str:
    if not is_mirror_of(candidate, owner):
        raise ValueError(f"{candidate!r} is not a mirror title for {owner!r}")
    return candidate[len(mirror_prefix(owner)) :]


def mirror_description(owner: str, description: str | None) -> str:
    return (
        f"Automatically synced OOO event from {owner}'s calendar.\n"
        f"Original event: {description or 'No description provided'}"
    )


def build_mirror_draft(owner: str, event: SourceEvent) -> MirrorDraft:
    # start/end copied verbatim; transparency is forced by MirrorDraft
    return MirrorDraft(
        summary=mirror_title(owner, event.summary),
        description=mirror_description(owner, event.description),
        start=dict(event.start),
        end=dict(event.end),
    )
