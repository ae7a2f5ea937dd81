"""Name-collision detection and resolution for upload batches."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from copyparty_bridge import paths
from copyparty_bridge.models import ConflictStrategy, PlannedUpload, UploadCandidate

logger = logging.getLogger(__name__)


def split_extension(name: str) -> tuple[str, str]:
    """Split ``name`` into stem and extension (with its dot).

    Dotfiles and names ending in a dot have no extension.
    """
    dot = name.rfind(".")
    if dot <= 0 or dot == len(name) - 1:
        return name, ""
    return name[:dot], name[dot:]


def unique_name(name: str, taken: set[str] | frozenset[str]) -> str:
    """Return ``name`` with the first free ``" (n)"`` suffix, starting at 2."""
    stem, extension = split_extension(name)
    counter = 2
    while True:
        candidate = f"{stem} ({counter}){extension}"
        if candidate not in taken:
            return candidate
        counter += 1


def is_top_level(candidate: UploadCandidate) -> bool:
    """True when the candidate lands directly in the batch destination."""
    return "/" not in candidate.relative_path


def find_conflicts(
    candidates: Iterable[UploadCandidate], existing_files: Iterable[str]
) -> list[UploadCandidate]:
    """Return candidates that would overwrite a file already in the destination.

    Only top-level candidates can conflict, and only with files; folders in
    the listing are never passed here.
    """
    existing = set(existing_files)
    return [
        candidate
        for candidate in candidates
        if is_top_level(candidate) and candidate.relative_path in existing
    ]


def resolve(
    candidates: Iterable[UploadCandidate],
    existing_files: Iterable[str],
    strategy: ConflictStrategy | str,
    destination_path: str,
) -> list[PlannedUpload]:
    """Plan final names and destinations for a batch.

    Args:
        candidates: Collected candidates, in the order they should be planned
        existing_files: File names currently known in ``destination_path``
        strategy: skip, rename or replace
        destination_path: Folder the batch is being uploaded into

    Returns:
        Planned uploads in input order; skipped candidates are absent.

    Names are reserved per destination folder in input order, so two files
    with the same name in one batch never overwrite each other. Replace only
    applies to the first claim on an existing top-level name; later claims and
    nested destinations fall back to renaming.
    """
    strategy = ConflictStrategy(strategy)
    destination = paths.normalize(destination_path)
    existing = frozenset(existing_files)
    claimed: dict[str, set[str]] = {}
    plans: list[PlannedUpload] = []
    skipped = renamed = replaced = 0

    for candidate in candidates:
        relative_dir = paths.parent("/" + candidate.relative_path) or paths.ROOT
        target_dir = paths.join(destination, relative_dir)
        source_name = paths.leaf_name(candidate.relative_path) or candidate.relative_path
        remote_names = existing if target_dir == destination else frozenset()
        batch_names = claimed.setdefault(target_dir, set())

        conflicts_remote = source_name in remote_names
        conflicts_batch = source_name in batch_names
        target_name = source_name
        replace_existing = False

        if conflicts_remote or conflicts_batch:
            if strategy is ConflictStrategy.SKIP and conflicts_remote:
                skipped += 1
                continue
            if strategy is ConflictStrategy.REPLACE and not conflicts_batch:
                replace_existing = True
                replaced += 1
            else:
                target_name = unique_name(source_name, remote_names | batch_names)
                renamed += 1

        batch_names.add(target_name)
        plans.append(
            PlannedUpload(
                candidate=candidate,
                source_name=source_name,
                target_name=target_name,
                destination_path=target_dir,
                replace_existing=replace_existing,
            )
        )

    if skipped or renamed or replaced:
        logger.info(
            f"Resolved conflicts in {destination} with {strategy.value}: "
            f"{skipped} skipped, {renamed} renamed, {replaced} replaced"
        )
    return plans
