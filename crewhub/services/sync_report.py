"""
Run report accumulated by the planning synchronizer.
"""
import uuid
from dataclasses import dataclass, field, asdict
from typing import List, Optional, Dict, Any

ACTION_COPIED = "copied"
ACTION_CREATED = "created"
ACTION_DELETED = "deleted"
ACTION_SKIPPED = "skipped"


@dataclass
class SyncResult:
    worker_id: str
    worker_name: str
    action: str  # copied|created|deleted|skipped
    details: str
    job_site_id: Optional[str] = None


@dataclass
class SyncStats:
    copied: int = 0
    created: int = 0
    deleted: int = 0
    protected: int = 0

    def add(self, other: "SyncStats") -> None:
        self.copied += other.copied
        self.created += other.created
        self.deleted += other.deleted
        self.protected += other.protected

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class SyncReport:
    results: List[SyncResult] = field(default_factory=list)
    stats: SyncStats = field(default_factory=SyncStats)

    def record(
        self,
        worker_id: uuid.UUID,
        worker_name: str,
        action: str,
        details: str,
        job_site_id: Optional[uuid.UUID] = None,
        protected: bool = False,
    ) -> SyncResult:
        result = SyncResult(
            worker_id=str(worker_id),
            worker_name=worker_name,
            action=action,
            details=details,
            job_site_id=str(job_site_id) if job_site_id else None,
        )
        self.results.append(result)
        if action == ACTION_COPIED:
            self.stats.copied += 1
        elif action == ACTION_CREATED:
            self.stats.created += 1
        elif action == ACTION_DELETED:
            self.stats.deleted += 1
        if protected:
            self.stats.protected += 1
        return result

    def extend(self, other: "SyncReport") -> None:
        self.results.extend(other.results)
        self.stats.add(other.stats)

    def results_as_dicts(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        results = self.results if limit is None else self.results[:limit]
        return [asdict(r) for r in results]
