"""
schedule_store.py - Ownership of VestingSchedule records

Schedules are keyed by (beneficiary, id). Ids are assigned per beneficiary
in creation order starting at 0; the id of a committed schedule is never
reused. Committed records are never deleted; a schedule is only replaced
by a newer snapshot of itself (claim, cancel) or discarded when its
creation is rolled back.
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import replace
import threading
from typing import Dict, Iterator, List, Optional

from .core import VestingSchedule, ScheduleKey


class ScheduleStore:
    """
    In-memory collection of vesting schedules.

    Thread Safety:
        Internal maps are guarded by a lock so schedules for different assets
        can be created concurrently. Serialising changes to one schedule is the
        caller's job (the engine holds the schedule asset's lock).
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._schedules: Dict[ScheduleKey, VestingSchedule] = {}
        self._order: Dict[str, List[int]] = defaultdict(list)
        self._next_id: Dict[str, int] = defaultdict(int)

    def __len__(self) -> int:
        return len(self._schedules)

    def __iter__(self) -> Iterator[VestingSchedule]:
        with self._lock:
            snapshot = list(self._schedules.values())
        return iter(snapshot)

    def get(self, beneficiary: str, schedule_id: int) -> Optional[VestingSchedule]:
        return self._schedules.get((beneficiary, schedule_id))

    def for_beneficiary(self, beneficiary: str) -> List[VestingSchedule]:
        """Return a beneficiary's schedules in creation order."""
        with self._lock:
            ids = list(self._order.get(beneficiary, ()))
            return [self._schedules[(beneficiary, i)] for i in ids]

    def beneficiaries(self) -> List[str]:
        with self._lock:
            return sorted(b for b, ids in self._order.items() if ids)

    def insert(self, schedule: VestingSchedule) -> VestingSchedule:
        """
        Assign the next id for the schedule's beneficiary and store it.

        The id on the passed-in schedule is ignored.

        Returns:
            The stored schedule carrying its assigned id
        """
        with self._lock:
            schedule_id = self._next_id[schedule.beneficiary]
            self._next_id[schedule.beneficiary] = schedule_id + 1
            stored = replace(schedule, id=schedule_id)
            self._schedules[stored.key] = stored
            self._order[stored.beneficiary].append(schedule_id)
            return stored

    def update(self, schedule: VestingSchedule) -> VestingSchedule:
        """
        Replace an existing schedule with a newer snapshot.

        Raises:
            KeyError: If no schedule exists under the same key
        """
        with self._lock:
            if schedule.key not in self._schedules:
                raise KeyError(f"No schedule {schedule.beneficiary}#{schedule.id}")
            self._schedules[schedule.key] = schedule
            return schedule

    def discard(self, schedule: VestingSchedule) -> None:
        """
        Remove a schedule whose creation is being rolled back.

        The id is handed back only when it is still the beneficiary's latest,
        so ids stay unique and creation-ordered.
        """
        with self._lock:
            self._schedules.pop(schedule.key, None)
            ids = self._order.get(schedule.beneficiary, [])
            if schedule.id in ids:
                ids.remove(schedule.id)
            if self._next_id[schedule.beneficiary] == schedule.id + 1:
                self._next_id[schedule.beneficiary] = schedule.id
