"""Concrete repository implementations backed by memory and SQLite."""
from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Set

from .domain import LearnerState
from .errors import ErrorCode, SchedulerError
from .repositories import FactRepository, LearnerStateRepository


def _conflict(learner_id: str, expected_version: int, stored_version: Optional[int]) -> SchedulerError:
    return SchedulerError(
        ErrorCode.CONFLICT,
        f"Learner {learner_id} is at version {stored_version}, expected {expected_version}",
    )


def _already_initialized(learner_id: str) -> SchedulerError:
    return SchedulerError(
        ErrorCode.ALREADY_INITIALIZED, f"Learner {learner_id} is already initialized"
    )


class InMemoryLearnerStateRepository(LearnerStateRepository):
    """Keeps serialized learner states so callers never share mutable objects."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._states: Dict[str, dict] = {}

    def load(self, learner_id: str) -> Optional[LearnerState]:
        with self._lock:
            payload = self._states.get(learner_id)
        if payload is None:
            return None
        return LearnerState.from_dict(payload)

    def create(self, state: LearnerState) -> None:
        payload = state.to_dict()
        with self._lock:
            if state.learner_id in self._states:
                raise _already_initialized(state.learner_id)
            self._states[state.learner_id] = payload

    def save(self, state: LearnerState, expected_version: int) -> None:
        payload = state.to_dict()
        with self._lock:
            stored = self._states.get(state.learner_id)
            stored_version = stored["version"] if stored else None
            if stored_version != expected_version:
                raise _conflict(state.learner_id, expected_version, stored_version)
            self._states[state.learner_id] = payload


class SqliteLearnerStateRepository(LearnerStateRepository):
    """Stores learner states as JSON documents with a version column."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._initialise_schema()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _initialise_schema(self) -> None:
        with self._lock:
            cursor = self._conn.cursor()
            cursor.executescript(
                """
                CREATE TABLE IF NOT EXISTS learner_state (
                    learner_id TEXT PRIMARY KEY,
                    version INTEGER NOT NULL,
                    state_json TEXT NOT NULL
                );
                """
            )
            self._conn.commit()

    def load(self, learner_id: str) -> Optional[LearnerState]:
        with self._lock:
            cursor = self._conn.cursor()
            row = cursor.execute(
                "SELECT state_json FROM learner_state WHERE learner_id = ?",
                (learner_id,),
            ).fetchone()
        if not row:
            return None
        return LearnerState.from_dict(json.loads(row["state_json"]))

    def create(self, state: LearnerState) -> None:
        payload = json.dumps(state.to_dict())
        with self._lock:
            cursor = self._conn.cursor()
            try:
                cursor.execute(
                    """
                    INSERT INTO learner_state (learner_id, version, state_json)
                    VALUES (?, ?, ?)
                    """,
                    (state.learner_id, state.version, payload),
                )
            except sqlite3.IntegrityError as exc:
                self._conn.rollback()
                raise _already_initialized(state.learner_id) from exc
            self._conn.commit()

    def save(self, state: LearnerState, expected_version: int) -> None:
        payload = json.dumps(state.to_dict())
        with self._lock:
            cursor = self._conn.cursor()
            cursor.execute(
                """
                UPDATE learner_state
                   SET version = ?, state_json = ?
                 WHERE learner_id = ? AND version = ?
                """,
                (state.version, payload, state.learner_id, expected_version),
            )
            if cursor.rowcount == 0:
                self._conn.rollback()
                row = cursor.execute(
                    "SELECT version FROM learner_state WHERE learner_id = ?",
                    (state.learner_id,),
                ).fetchone()
                raise _conflict(state.learner_id, expected_version, row["version"] if row else None)
            self._conn.commit()


class InMemoryFactRepository(FactRepository):
    """Curriculum facts and unit-to-fact links held in memory."""

    def __init__(
        self,
        facts: Iterable[str] = (),
        unit_facts: Optional[Mapping[str, Iterable[str]]] = None,
    ) -> None:
        self._facts: Set[str] = set(facts)
        self._unit_facts: Dict[str, List[str]] = {}
        for unit_id, fact_ids in (unit_facts or {}).items():
            self.register_unit(unit_id, fact_ids)

    @classmethod
    def from_json_file(cls, path: Path) -> "InMemoryFactRepository":
        """Load ``{"facts": [...], "units": {unit_id: [fact_id, ...]}}``."""

        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls(facts=payload.get("facts") or (), unit_facts=payload.get("units") or {})

    def register_fact(self, fact_id: str) -> None:
        self._facts.add(fact_id)

    def register_unit(self, unit_id: str, fact_ids: Iterable[str]) -> None:
        fact_ids = list(dict.fromkeys(fact_ids))
        self._facts.update(fact_ids)
        self._unit_facts[unit_id] = fact_ids

    def fact_exists(self, fact_id: str) -> bool:
        return fact_id in self._facts

    def get_fact_ids(self, unit_id: str) -> List[str]:
        return list(self._unit_facts.get(unit_id, []))


__all__ = [
    "InMemoryFactRepository",
    "InMemoryLearnerStateRepository",
    "SqliteLearnerStateRepository",
]
