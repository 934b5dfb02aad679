"""Classify local branches as merged into a target branch.

Two phases:

1. *Trivial*: ``git branch --merged <target>`` lists branches whose history
   is contained in the target.
2. *Squash*: for every remaining branch, the combined diff between its merge
   base with the target and its tip is fingerprinted with ``git patch-id``.
   A branch is merged when that fingerprint equals the fingerprint of some
   commit on the target since the earliest merge base among all candidates.

The squash phase costs one process per candidate plus one per target commit,
so it is meant for explicit, on-demand runs.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from .process import ProcessRunner

logger = logging.getLogger(__name__)

PATCH_ID_ARGS = ("patch-id", "--stable")


@dataclass(frozen=True)
class MergeAnalysis:
    target: str
    trivial: frozenset[str] = field(default_factory=frozenset)
    squashed: frozenset[str] = field(default_factory=frozenset)

    @property
    def merged(self) -> frozenset[str]:
        return self.trivial | self.squashed


class MergeDetector:
    def __init__(self, runner: ProcessRunner) -> None:
        self.runner = runner

    def analyze(
        self,
        target: str,
        current: str | None,
        branches: Iterable[str],
    ) -> MergeAnalysis:
        """Return which of *branches* are merged into *target*, excluding *target* and *current*."""
        excluded = {target}
        if current:
            excluded.add(current)

        live = set(branches)
        trivial = (self.trivially_merged(target) & live) - excluded
        candidates = sorted(live - trivial - excluded)
        squashed = self.squash_merged(target, candidates) if candidates else set()

        logger.info(
            "merge analysis target=%s trivial=%d squashed=%d candidates=%d",
            target,
            len(trivial),
            len(squashed),
            len(candidates),
        )
        return MergeAnalysis(target=target, trivial=frozenset(trivial), squashed=frozenset(squashed))

    def trivially_merged(self, target: str) -> set[str]:
        result = self.runner.run(["branch", "--merged", target, "--format=%(refname:short)"])
        if not result.success:
            return set()
        return {line.strip() for line in result.stdout.splitlines() if line.strip()}

    def squash_merged(self, target: str, candidates: Iterable[str]) -> set[str]:
        bases: dict[str, str] = {}
        for candidate in candidates:
            base = self.merge_base(target, candidate)
            if base is None:
                logger.debug("No merge base between %s and %s; skipping", target, candidate)
                continue
            bases[candidate] = base

        if not bases:
            return set()

        earliest = self.earliest_base(bases.values())
        target_fingerprints = self.target_fingerprints(target, earliest)
        if not target_fingerprints:
            return set()

        squashed: set[str] = set()
        for candidate, base in bases.items():
            fingerprint = self.fingerprint_range(base, candidate)
            if fingerprint and fingerprint in target_fingerprints:
                squashed.add(candidate)
        return squashed

    def merge_base(self, first: str, second: str) -> str | None:
        result = self.runner.run(["merge-base", first, second])
        if not result.success:
            return None
        base = result.stdout.strip()
        return base or None

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        result = self.runner.run(["merge-base", "--is-ancestor", ancestor, descendant])
        return result.success

    def earliest_base(self, bases: Iterable[str]) -> str:
        """Pick the most ancestral base; the first one wins unless another precedes it."""
        earliest: str | None = None
        for base in bases:
            if earliest is None:
                earliest = base
            elif base != earliest and self.is_ancestor(base, earliest):
                earliest = base
        if earliest is None:
            raise ValueError("earliest_base requires at least one base")
        return earliest

    def target_fingerprints(self, target: str, base: str) -> set[str]:
        result = self.runner.run(["rev-list", f"{base}..{target}", "--"])
        if not result.success:
            return set()
        fingerprints: set[str] = set()
        for commit in result.stdout.split():
            fingerprint = self._patch_id(["show", "--no-color", "--format=", commit, "--"])
            if fingerprint:
                fingerprints.add(fingerprint)
        return fingerprints

    def fingerprint_range(self, base: str, tip: str) -> str | None:
        return self._patch_id(["diff", "--no-color", base, tip, "--"])

    def _patch_id(self, diff_args: list[str]) -> str | None:
        result = self.runner.run_pipeline(diff_args, PATCH_ID_ARGS)
        if not result.success:
            return None
        line = result.stdout.strip()
        if not line:
            return None
        return line.split()[0]
