"""
Plan Registry

Persistent map from (workload shape class, hardware fingerprint) to the best
known configuration, so that repeated planning of the same workload on the
same hardware is a lookup instead of a search.

Key Principles:
- One row per (shape_class, hw_fingerprint); an upsert keeps the faster plan
- Every write is a single transaction
- Rebuild regenerates all entries of one hardware before touching storage
  and swaps them in atomically; other hardware is never touched

Usage:
    from kernel_planner.registry.plan_registry import PlanRegistry

    with PlanRegistry("plans.db") as registry:
        entry = registry.lookup(workload.shape_class(), hw.fingerprint)
        if entry is None:
            registry.upsert(PlanRegistryEntry.create(workload, candidate, time_ns,
                                                     hw.fingerprint, source="bench"))
"""

import json
import sqlite3
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from ..core.errors import RegistryError, SearchInterrupted
from ..core.structures import CandidateConfiguration, WorkloadDescriptor


SOURCES = ("model", "bench", "search", "rebuild")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# ENTRY
# =============================================================================

@dataclass
class PlanRegistryEntry:
    """One stored plan"""
    shape_class: str
    hw_fingerprint: str
    workload: WorkloadDescriptor
    config: CandidateConfiguration
    time_ns: float
    source: str = "model"
    updated_at: str = field(default_factory=_now)

    def __post_init__(self):
        if self.source not in SOURCES:
            raise ValueError(f"Unknown plan source '{self.source}', expected one of {SOURCES}")

    @classmethod
    def create(cls, workload: WorkloadDescriptor, config: CandidateConfiguration,
               time_ns: float, hw_fingerprint: str, source: str = "model") -> 'PlanRegistryEntry':
        return cls(
            shape_class=workload.shape_class(),
            hw_fingerprint=hw_fingerprint,
            workload=workload,
            config=config,
            time_ns=time_ns,
            source=source,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'shape_class': self.shape_class,
            'hw_fingerprint': self.hw_fingerprint,
            'workload': self.workload.to_dict(),
            'config': self.config.to_dict(),
            'time_ns': self.time_ns,
            'source': self.source,
            'updated_at': self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PlanRegistryEntry':
        return cls(
            shape_class=data['shape_class'],
            hw_fingerprint=data['hw_fingerprint'],
            workload=WorkloadDescriptor.from_dict(data['workload']),
            config=CandidateConfiguration.from_dict(data['config']),
            time_ns=float(data['time_ns']),
            source=data.get('source', 'model'),
            updated_at=data.get('updated_at', _now()),
        )

    def _to_row(self) -> tuple:
        return (self.shape_class, self.hw_fingerprint,
                json.dumps(self.workload.to_dict(), sort_keys=True),
                json.dumps(self.config.to_dict(), sort_keys=True),
                self.time_ns, self.source, self.updated_at)

    @classmethod
    def _from_row(cls, row: sqlite3.Row) -> 'PlanRegistryEntry':
        return cls(
            shape_class=row['shape_class'],
            hw_fingerprint=row['hw_fingerprint'],
            workload=WorkloadDescriptor.from_dict(json.loads(row['workload'])),
            config=CandidateConfiguration.from_dict(json.loads(row['config'])),
            time_ns=row['time_ns'],
            source=row['source'],
            updated_at=row['updated_at'],
        )

    def summary(self) -> str:
        return (f"{self.shape_class} @ {self.hw_fingerprint}: {self.config} "
                f"{self.time_ns * 1e-6:.4f} ms [{self.source}, {self.updated_at}]")


# =============================================================================
# REGISTRY
# =============================================================================

_INSERT = """
    INSERT OR REPLACE INTO plan_entries
        (shape_class, hw_fingerprint, workload, config, time_ns, source, updated_at)
    VALUES (?, ?, ?, ?, ?, ?, ?)
"""


class PlanRegistry:
    """
    SQLite-backed plan registry.

    Safe to share between threads: every operation holds the registry lock.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        """
        Open (and create if needed) the registry.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory.
        """
        self.db_path = str(db_path)
        self._lock = threading.RLock()
        try:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            if self.db_path != ":memory:":
                self.conn.execute("PRAGMA journal_mode=WAL")
            self._create_schema()
        except (sqlite3.Error, OSError) as e:
            raise RegistryError(f"Cannot open plan registry {self.db_path}: {e}") from e

    def _create_schema(self):
        """Create database tables."""
        with self.conn:
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS plan_entries (
                    shape_class TEXT NOT NULL,
                    hw_fingerprint TEXT NOT NULL,
                    workload TEXT NOT NULL,
                    config TEXT NOT NULL,
                    time_ns REAL NOT NULL,
                    source TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (shape_class, hw_fingerprint)
                )
            """)
            self.conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_hw_fingerprint
                ON plan_entries(hw_fingerprint)
            """)

    # =========================================================================
    # READ OPERATIONS
    # =========================================================================

    def lookup(self, shape_class: str, hw_fingerprint: str) -> Optional[PlanRegistryEntry]:
        """Stored plan of a workload shape on a hardware, if any."""
        with self._lock:
            try:
                row = self.conn.execute(
                    "SELECT * FROM plan_entries WHERE shape_class = ? AND hw_fingerprint = ?",
                    (shape_class, hw_fingerprint)).fetchone()
            except sqlite3.Error as e:
                raise RegistryError(f"Registry lookup failed: {e}") from e
        return PlanRegistryEntry._from_row(row) if row else None

    def entries(self, hw_fingerprint: Optional[str] = None) -> List[PlanRegistryEntry]:
        """All stored plans, optionally of one hardware."""
        query = "SELECT * FROM plan_entries"
        params: tuple = ()
        if hw_fingerprint is not None:
            query += " WHERE hw_fingerprint = ?"
            params = (hw_fingerprint,)
        query += " ORDER BY hw_fingerprint, shape_class"
        with self._lock:
            try:
                rows = self.conn.execute(query, params).fetchall()
            except sqlite3.Error as e:
                raise RegistryError(f"Registry listing failed: {e}") from e
        return [PlanRegistryEntry._from_row(r) for r in rows]

    def count(self, hw_fingerprint: Optional[str] = None) -> int:
        return len(self.entries(hw_fingerprint))

    # =========================================================================
    # WRITE OPERATIONS
    # =========================================================================

    def upsert(self, entry: PlanRegistryEntry, force: bool = False) -> bool:
        """
        Store a plan unless a faster one is already stored.

        Args:
            entry: Plan to store
            force: Replace the stored plan regardless of time

        Returns:
            True if the entry was written
        """
        with self._lock:
            try:
                with self.conn:
                    row = self.conn.execute(
                        "SELECT time_ns FROM plan_entries "
                        "WHERE shape_class = ? AND hw_fingerprint = ?",
                        (entry.shape_class, entry.hw_fingerprint)).fetchone()
                    if row is not None and not force and entry.time_ns > row['time_ns']:
                        return False
                    self.conn.execute(_INSERT, entry._to_row())
            except sqlite3.Error as e:
                raise RegistryError(f"Registry write failed: {e}") from e
        return True

    def rebuild(
        self,
        hw_fingerprint: str,
        regenerate: Callable[[WorkloadDescriptor], PlanRegistryEntry],
        time_budget_s: Optional[float] = None,
    ) -> int:
        """
        Regenerate every entry of one hardware and replace them atomically.

        All entries are regenerated first; storage is modified only after
        every regeneration succeeded, in one transaction. A failure or an
        expired budget leaves the registry unchanged.

        Args:
            hw_fingerprint: Hardware whose entries are rebuilt
            regenerate: Produces the new entry for a stored workload
            time_budget_s: Wall-clock budget (None = unlimited)

        Returns:
            Number of entries written

        Raises:
            SearchInterrupted: the budget expired
            RegistryError: storage failed
        """
        deadline = time.monotonic() + time_budget_s if time_budget_s is not None else None
        old_entries = self.entries(hw_fingerprint)

        new_entries = []
        for entry in old_entries:
            if deadline is not None and time.monotonic() >= deadline:
                raise SearchInterrupted(
                    f"Rebuild budget of {time_budget_s}s expired after "
                    f"{len(new_entries)}/{len(old_entries)} entries; registry unchanged")
            new_entry = regenerate(entry.workload)
            if new_entry.hw_fingerprint != hw_fingerprint:
                raise RegistryError(
                    f"Regenerated entry targets {new_entry.hw_fingerprint}, "
                    f"expected {hw_fingerprint}")
            new_entries.append(new_entry)

        with self._lock:
            try:
                with self.conn:
                    self.conn.execute("DELETE FROM plan_entries WHERE hw_fingerprint = ?",
                                      (hw_fingerprint,))
                    self.conn.executemany(_INSERT, [e._to_row() for e in new_entries])
            except sqlite3.Error as e:
                raise RegistryError(f"Registry rebuild failed: {e}") from e
        return len(new_entries)

    def close(self):
        """Close database connection."""
        with self._lock:
            self.conn.close()

    def __enter__(self) -> 'PlanRegistry':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
