"""Artifact archiving and build retention.

Artifacts are declared as glob patterns relative to the workspace and are
resolved when archived, not when declared. Archiving is best-effort: a
pattern that matches nothing produces an empty set, and a copy failure is
logged and skipped.
"""

from __future__ import annotations

import glob
import logging
import os
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

BUILD_DIR_PATTERN = re.compile(r"^build_(\d+)$")


def build_dir_name(build_number: int) -> str:
    return f"build_{build_number}"


@dataclass
class ArtifactSet:
    """Named collection of archived paths. Empty sets are valid."""

    name: str
    paths: List[Path] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.paths)

    @property
    def is_empty(self) -> bool:
        return not self.paths


class ArtifactArchiver:
    """Copies matching workspace paths into a per-build artifact directory.

    Parameters
    ----------
    artifacts_dir : PathLike
        Root under which ``build_<n>/<set name>/`` directories are created
    workspace : PathLike
        Directory that relative patterns are resolved against

    Example
    -------
    >>> archiver = ArtifactArchiver("artifacts", workspace=".")
    >>> artifact_set = archiver.archive(12, "etl", ["logs/**", "reports/*.csv"])
    >>> len(artifact_set)
    """

    def __init__(self, artifacts_dir: PathLike, workspace: PathLike = "."):
        self.artifacts_dir = Path(artifacts_dir)
        self.workspace = Path(workspace)

    def build_dir(self, build_number: int) -> Path:
        return self.artifacts_dir / build_dir_name(build_number)

    def resolve(self, patterns: Iterable[str]) -> List[Path]:
        """Expand glob patterns into existing paths, outside the artifact root."""
        artifact_root = self.artifacts_dir.resolve()
        matches = set()
        for pattern in patterns:
            full_pattern = os.path.join(str(self.workspace), pattern)
            for match in glob.glob(full_pattern, recursive=True):
                path = Path(match)
                resolved = path.resolve()
                # The artifact tree and its ancestors are never archived
                if (
                    resolved == artifact_root
                    or artifact_root in resolved.parents
                    or resolved in artifact_root.parents
                ):
                    continue
                matches.add(path)

        # Drop entries already covered by a matched parent directory
        ordered = sorted(matches, key=lambda p: (len(p.parts), str(p)))
        selected: List[Path] = []
        for path in ordered:
            if any(parent in path.parents for parent in selected if parent.is_dir()):
                continue
            selected.append(path)
        return selected

    def _destination(self, target_root: Path, source: Path) -> Path:
        try:
            relative = source.resolve().relative_to(self.workspace.resolve())
        except ValueError:
            relative = Path(source.name)
        return target_root / relative

    def archive(
        self, build_number: int, name: str, patterns: Iterable[str]
    ) -> ArtifactSet:
        """Archive everything matching ``patterns`` under ``build_<n>/<name>``.

        Parameters
        ----------
        build_number : int
            Build whose artifact directory receives the copies
        name : str
            Artifact set name (a stage id, or ``run`` for the final sweep)
        patterns : Iterable[str]
            Glob patterns; ``**`` matches recursively

        Returns
        -------
        ArtifactSet
            Archived destination paths, possibly empty
        """
        artifact_set = ArtifactSet(name=name)
        patterns = list(patterns)
        if not patterns:
            return artifact_set

        target_root = self.build_dir(build_number) / name
        for source in self.resolve(patterns):
            destination = self._destination(target_root, source)
            try:
                destination.parent.mkdir(parents=True, exist_ok=True)
                if source.is_dir():
                    shutil.copytree(source, destination, dirs_exist_ok=True)
                else:
                    shutil.copy2(source, destination)
            except (OSError, shutil.Error) as e:
                logger.warning(f"Could not archive {source}: {e}")
                continue
            artifact_set.paths.append(destination)

        if artifact_set.is_empty:
            logger.info(f"Archived 0 artifacts for '{name}' (no matches)")
        else:
            logger.info(f"Archived {len(artifact_set)} artifact(s) for '{name}'")
        return artifact_set

    def prune(
        self, keep: int, extra_roots: Optional[Iterable[PathLike]] = None
    ) -> List[Path]:
        """Delete all but the newest ``keep`` build directories.

        Parameters
        ----------
        keep : int
            Number of most recent builds to retain
        extra_roots : Iterable[PathLike], optional
            Further roots holding ``build_<n>`` directories (e.g. the logs dir)

        Returns
        -------
        List[Path]
            Directories that were removed
        """
        removed: List[Path] = []
        roots = [self.artifacts_dir] + [Path(p) for p in (extra_roots or [])]
        for root in roots:
            for path in prune_build_dirs(root, keep):
                removed.append(path)
        return removed


def list_build_dirs(root: PathLike) -> List[tuple]:
    """Return ``(build_number, path)`` pairs under ``root``, newest first."""
    root = Path(root)
    if not root.is_dir():
        return []
    builds = []
    for child in root.iterdir():
        match = BUILD_DIR_PATTERN.match(child.name)
        if match and child.is_dir():
            builds.append((int(match.group(1)), child))
    return sorted(builds, key=lambda item: item[0], reverse=True)


def prune_build_dirs(root: PathLike, keep: int) -> List[Path]:
    removed = []
    for _, path in list_build_dirs(root)[max(keep, 0):]:
        try:
            shutil.rmtree(path)
        except OSError as e:
            logger.warning(f"Could not prune {path}: {e}")
            continue
        logger.debug(f"Pruned {path}")
        removed.append(path)
    return removed
