"""Condition store: the ordered set of stage conditions of one package."""

import logging
from typing import Optional

from pkginstaller.models.package import Package, PackageCondition, utcnow
from pkginstaller.models.status import STAGE_ORDER, ConditionStatus, ConditionType
from pkginstaller.services.state_store import StatusStore, persist_status


class ConditionStore:
    """Fixed, ordered mapping of stage → condition over a package's status.

    The store mutates the condition objects held in ``package.status`` in
    place, so ``persist()`` always writes what the store shows.

    Invariants:
    - exactly one condition per stage, in ``STAGE_ORDER``
    - ``last_transition_time`` moves only when a status value changes
    - progress stays within [0, 100]
    """

    def __init__(
        self,
        package: Package,
        store: Optional[StatusStore] = None,
    ):
        self.logger = logging.getLogger("pkginstaller.conditions")
        self.package = package
        self.store = store
        self._conditions: dict[ConditionType, PackageCondition] = {}
        self._index()

    def _index(self) -> None:
        conditions = self.package.status.conditions
        if not conditions:
            self._conditions = {}
            return
        by_type = {condition.type: condition for condition in conditions}
        if len(by_type) != len(conditions) or set(by_type) != set(STAGE_ORDER):
            raise ValueError(
                f"package {self.package.key} has malformed conditions: "
                f"{[c.type.value for c in conditions]}"
            )
        # Keep the persisted list itself in stage order
        self.package.status.conditions = [by_type[stage] for stage in STAGE_ORDER]
        self._conditions = {stage: by_type[stage] for stage in STAGE_ORDER}

    @property
    def is_empty(self) -> bool:
        return not self._conditions

    def initialize(self, status: ConditionStatus = ConditionStatus.WAITING) -> None:
        """Create one condition per stage, all at ``status``.

        Also resets the pushed-image bookkeeping.
        """
        now = utcnow()
        conditions = [
            PackageCondition(
                type=stage,
                status=status,
                progress=100 if status == ConditionStatus.COMPLETED else 0,
                last_heartbeat_time=now,
                last_transition_time=now,
            )
            for stage in STAGE_ORDER
        ]
        self.package.status.conditions = conditions
        self.package.status.images_pushed = []
        self.package.status.images_number = 0
        self._index()
        self.logger.info(f"Initialized conditions of {self.package.key} to {status.value}")

    def get(self, stage: ConditionType) -> Optional[PackageCondition]:
        return self._conditions.get(stage)

    def __iter__(self):
        return iter(self._conditions.values())

    def set_status(self, stage: ConditionType, status: ConditionStatus) -> None:
        condition = self.get(stage)
        if condition is None:
            return
        now = utcnow()
        if condition.status != status:
            condition.last_transition_time = now
            self.logger.debug(
                f"{self.package.key} {stage.value}: {condition.status.value} -> {status.value}"
            )
        condition.last_heartbeat_time = now
        condition.status = status
        if status == ConditionStatus.COMPLETED:
            condition.progress = 100
            condition.reason = ""
            condition.message = ""

    def set_reason(self, stage: ConditionType, reason: str, message: str) -> None:
        condition = self.get(stage)
        if condition is None:
            return
        condition.last_heartbeat_time = utcnow()
        condition.reason = reason
        condition.message = message

    def set_progress(self, stage: ConditionType, value: int) -> bool:
        """Store a clamped progress value.

        Returns:
            True if the stored value changed (a write is worth doing)
        """
        condition = self.get(stage)
        if condition is None:
            return False
        value = max(0, min(100, int(value)))
        condition.last_heartbeat_time = utcnow()
        if condition.progress != value:
            condition.progress = value
            return True
        return False

    def status_of(self, stage: ConditionType) -> Optional[ConditionStatus]:
        condition = self.get(stage)
        return condition.status if condition is not None else None

    def is_completed(self, stage: ConditionType) -> bool:
        return self.status_of(stage) == ConditionStatus.COMPLETED

    def first_with_status(self, status: ConditionStatus) -> Optional[ConditionType]:
        for stage, condition in self._conditions.items():
            if condition.status == status:
                return stage
        return None

    def all_completed(self) -> bool:
        return bool(self._conditions) and all(
            c.status == ConditionStatus.COMPLETED for c in self._conditions.values()
        )

    def persist(self) -> None:
        """Write the whole condition set back to the status store.

        Raises:
            PersistenceError: If the write keeps conflicting
        """
        if self.store is None:
            raise RuntimeError("ConditionStore has no status store to persist to")
        persist_status(self.store, self.package)
