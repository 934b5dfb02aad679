"""Parsers turning git's line-oriented output into typed records.

All functions are pure. Malformed lines are dropped, never fatal.
"""

from __future__ import annotations

import locale
import re
from datetime import datetime, timezone

from .constants import DEFAULT_REMOTE, FIELD_SEPARATOR
from .models import Branch, CheckoutEntry, Commit, RefBadge

CURRENT_MARKER_PATTERN = re.compile(r"^\* ")
TRACKING_SUFFIX_PATTERN = re.compile(r"\s*\[.*?\]$")
TRACKING_PATTERN = re.compile(r"\[([^\]]+)\]")
AHEAD_PATTERN = re.compile(r"ahead (\d+)")
BEHIND_PATTERN = re.compile(r"behind (\d+)")
CHECKOUT_PATTERN = re.compile(r"checkout: moving from .+ to (.+)")
SELECTOR_DATE_PATTERN = re.compile(r"\{(.+)\}")
PRUNE_PATTERN = re.compile(r"\[(?:would prune|pruned)\]\s+(.+?)\s*$")

HEAD_DECORATION = "HEAD"
HEAD_POINTER_PREFIX = "HEAD -> "
TAG_PREFIX = "tag: "
DETACHED_ROW_PREFIX = "("


def name_sort_key(name: str) -> tuple[str, str]:
    """Collation order of the active LC_COLLATE, case-insensitive, ties on the raw name.

    Under the C locale this reduces to case-folded code point order.
    """
    return (locale.strxfrm(name.casefold()), name)


def parse_branch_list(output: str) -> list[Branch]:
    """Parse ``git branch --format`` output built from ``BRANCH_LIST_FORMAT``.

    The current branch sorts first, the rest by name.
    """
    branches: list[Branch] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        branch = _parse_branch_line(line)
        if branch is not None:
            branches.append(branch)

    return sorted(branches, key=lambda item: (not item.current, name_sort_key(item.name)))


def _parse_branch_line(line: str) -> Branch | None:
    parts = line.split(FIELD_SEPARATOR)
    if len(parts) < 5:
        return None

    raw_name, commit_hash = parts[0], parts[1].strip()
    if len(parts) == 5:
        message, author, date = parts[2], parts[3], parts[4]
        head_marker = ""
    else:
        # subjects may contain the separator; the trailing fields never do
        message = FIELD_SEPARATOR.join(parts[2:-3])
        author, date, head_marker = parts[-3], parts[-2], parts[-1]

    name = TRACKING_SUFFIX_PATTERN.sub("", CURRENT_MARKER_PATTERN.sub("", raw_name)).strip()
    if not name or not commit_hash:
        return None
    # "(HEAD detached at <sha>)" and "(no branch, rebasing x)" rows are not branches
    if name.startswith(DETACHED_ROW_PREFIX):
        return None

    ahead: int | None = None
    behind: int | None = None
    tracking: str | None = None
    upstream: str | None = None
    tracking_match = TRACKING_PATTERN.search(raw_name)
    if tracking_match:
        tracking = tracking_match.group(1).strip().rstrip(":").rstrip()
        upstream = tracking.split(":", 1)[0].strip() or None
        ahead_match = AHEAD_PATTERN.search(tracking)
        behind_match = BEHIND_PATTERN.search(tracking)
        if ahead_match:
            ahead = int(ahead_match.group(1))
        if behind_match:
            behind = int(behind_match.group(1))

    return Branch(
        name=name,
        hash=commit_hash,
        current=head_marker.strip() == "*",
        message=message.strip() or "No commit message",
        author=author.strip() or "Unknown",
        date=date.strip() or datetime.now(timezone.utc).isoformat(),
        ahead=ahead,
        behind=behind,
        tracking=tracking,
        upstream=upstream,
    )


def parse_refs(decoration: str, remote: str = DEFAULT_REMOTE) -> list[RefBadge]:
    """Turn a ``%D`` decoration string into ref badges.

    A local branch with a same-named remote counterpart becomes one synced
    badge; the remote counterpart is consumed. Leftover remote names follow
    as standalone badges.
    """
    remote_prefix = f"{remote}/"
    remote_head = f"{remote}/{HEAD_DECORATION}"
    entries: list[str] = []
    for raw in decoration.split(","):
        entry = raw.strip()
        if entry.startswith(HEAD_POINTER_PREFIX):
            entry = entry[len(HEAD_POINTER_PREFIX):].strip()
        if not entry or entry in (HEAD_DECORATION, remote_head):
            continue
        entries.append(entry)

    remote_candidates = [
        entry[len(remote_prefix):] for entry in entries if entry.startswith(remote_prefix)
    ]
    unmatched = list(remote_candidates)
    badges: list[RefBadge] = []
    for entry in entries:
        if entry.startswith(TAG_PREFIX):
            badges.append(RefBadge(name=entry[len(TAG_PREFIX):].strip(), type="tag"))
        elif entry.startswith(remote_prefix):
            continue
        else:
            synced = entry in unmatched
            if synced:
                unmatched.remove(entry)
            badges.append(RefBadge(name=entry, type="branch", synced=synced))

    for name in unmatched:
        badges.append(RefBadge(name=f"{remote_prefix}{name}", type="remote"))
    return badges


def parse_commit_log(output: str, remote: str = DEFAULT_REMOTE) -> list[Commit]:
    """Parse ``git log --format=COMMIT_LOG_FORMAT`` output."""
    commits: list[Commit] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        parts = line.split(FIELD_SEPARATOR)
        if len(parts) < 3:
            continue
        commit_hash = parts[0].strip()
        if not commit_hash:
            continue
        if len(parts) == 3:
            message, relative_date, decoration = parts[1], parts[2], ""
        else:
            message = FIELD_SEPARATOR.join(parts[1:-2])
            relative_date, decoration = parts[-2], parts[-1]
        commits.append(
            Commit(
                hash=commit_hash,
                message=message.strip(),
                relative_date=relative_date.strip(),
                refs=parse_refs(decoration, remote=remote),
            )
        )
    return commits


def parse_reflog(output: str) -> list[CheckoutEntry]:
    """Extract checkout targets from ``git reflog --format=REFLOG_FORMAT --date=iso``.

    Reflog is newest-first, so the first entry seen for a branch wins.
    """
    entries: list[CheckoutEntry] = []
    seen: set[str] = set()
    for line in output.splitlines():
        if not line.strip():
            continue
        parts = line.split(FIELD_SEPARATOR, 1)
        if len(parts) < 2:
            continue
        selector, action = parts
        match = CHECKOUT_PATTERN.search(action)
        if not match:
            continue
        date_match = SELECTOR_DATE_PATTERN.search(selector)
        if not date_match:
            continue
        branch = match.group(1).strip()
        if not branch or branch in seen:
            continue
        seen.add(branch)
        entries.append(CheckoutEntry(branch=branch, date=date_match.group(1).strip()))
    return entries


def parse_prune_output(output: str) -> list[str]:
    """Collect ref names from ``git remote prune [--dry-run]`` output."""
    refs: list[str] = []
    for line in output.splitlines():
        match = PRUNE_PATTERN.search(line)
        if match:
            refs.append(match.group(1))
    return refs


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse git iso dates (``2026-02-15 16:46:39 +0100``) and ISO-8601 strings."""
    if not value:
        return None
    text = value.strip()
    for fmt in ("%Y-%m-%d %H:%M:%S %z", "%Y-%m-%dT%H:%M:%S%z"):
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
