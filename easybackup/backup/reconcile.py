"""
Reconciliation of local and remote archive sets.

Pure decision logic: given both listings and a retention policy, compute
which archives to upload and which to prune in each location. No I/O.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Dict, Any

from .archive import Archive, Location, dedupe_by_name, newest_first


UNLIMITED = -1


@dataclass(frozen=True)
class RetentionPolicy:
    """
    Caps how many archives are kept per location.

    A negative max_count means unlimited retention.
    """

    max_count: int = UNLIMITED

    @property
    def unlimited(self) -> bool:
        return self.max_count < 0

    def overflow(self, archives: Iterable[Archive]) -> List[Archive]:
        """
        Archives beyond max_count, oldest first.

        Args:
            archives: Archives of a single location

        Returns:
            Archives to prune, oldest (by mtime, then name) first
        """
        if self.unlimited:
            return []
        ordered = newest_first(archives)
        return list(reversed(ordered[self.max_count:]))


@dataclass
class SyncPlan:
    """Operations needed to bring both locations into agreement."""

    to_upload: List[str] = field(default_factory=list)
    to_delete_local: List[str] = field(default_factory=list)
    to_delete_remote: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.to_upload or self.to_delete_local or self.to_delete_remote)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'to_upload': list(self.to_upload),
            'to_delete_local': list(self.to_delete_local),
            'to_delete_remote': list(self.to_delete_remote)
        }


def remote_overflow(remote: Iterable[Archive], uploaded: Iterable[Archive],
                    policy: RetentionPolicy) -> List[str]:
    """
    Remote archives to prune once the given local archives have been uploaded.

    Args:
        remote: Remote archives as listed
        uploaded: Local archives that are (or will be) present remotely too
        policy: Retention policy

    Returns:
        Names to delete remotely, oldest first
    """
    remote_archives = dedupe_by_name(remote)
    remote_names = {a.name for a in remote_archives}

    # Uploaded archives keep their local mtime for ordering purposes
    projected = remote_archives + [
        Archive(a.name, a.size_bytes, a.modified_at, Location.REMOTE)
        for a in dedupe_by_name(uploaded) if a.name not in remote_names
    ]
    return [a.name for a in policy.overflow(projected)]


def plan_sync(local: Iterable[Archive], remote: Optional[Iterable[Archive]],
              policy: RetentionPolicy) -> SyncPlan:
    """
    Compute the sync plan for one backup target.

    Args:
        local: Local archives
        remote: Remote archives, or None when the remote store is disabled
        policy: Retention policy applied to each location independently

    Returns:
        SyncPlan where:
        - to_upload holds local names absent remotely, oldest first
        - to_delete_local holds local overflow, oldest first
        - to_delete_remote holds overflow of the remote set as it will be
          after the uploads, oldest first
    """
    local_archives = dedupe_by_name(local)

    plan = SyncPlan(
        to_delete_local=[a.name for a in policy.overflow(local_archives)]
    )

    if remote is None:
        return plan

    remote_archives = dedupe_by_name(remote)
    remote_names = {a.name for a in remote_archives}

    uploads = [a for a in local_archives if a.name not in remote_names]
    plan.to_upload = [a.name for a in reversed(uploads)]
    plan.to_delete_remote = remote_overflow(remote_archives, uploads, policy)

    return plan
