from __future__ import annotations

import dataclasses
import logging
from threading import RLock
from typing import Any, Dict

from sqlalchemy.orm import Session

from .compliance import ComplianceThresholds
from .config import Settings
from .models import AppSetting

logger = logging.getLogger(__name__)

THRESHOLD_FIELDS = tuple(item.name for item in dataclasses.fields(ComplianceThresholds))


def thresholds_from_settings(base_settings: Settings) -> ComplianceThresholds:
    return ComplianceThresholds(**{name: getattr(base_settings, name) for name in THRESHOLD_FIELDS})


class RuntimeState:
    """Alert thresholds that can be adjusted while the service is running."""

    def __init__(self, base_settings: Settings):
        self._lock = RLock()
        self._thresholds = thresholds_from_settings(base_settings)

    @property
    def thresholds(self) -> ComplianceThresholds:
        with self._lock:
            return self._thresholds

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return dataclasses.asdict(self._thresholds)

    def apply(self, updates: Dict[str, Any]) -> ComplianceThresholds:
        """Merge updates into the current thresholds.

        Raises ``ValueError`` when the combination is inconsistent; the current
        thresholds are left untouched in that case.
        """
        with self._lock:
            changes = {
                key: int(value)
                for key, value in updates.items()
                if key in THRESHOLD_FIELDS and value is not None
            }
            if changes:
                self._thresholds = dataclasses.replace(self._thresholds, **changes)
            return self._thresholds

    def load_from_db(self, session: Session) -> None:
        records = session.query(AppSetting).filter(AppSetting.key.in_(THRESHOLD_FIELDS)).all()
        decoded: Dict[str, Any] = {}
        for record in records:
            try:
                decoded[record.key] = int(record.value)
            except ValueError:
                logger.warning("Ignoring stored setting %s=%r", record.key, record.value)
        if decoded:
            self.apply(decoded)

    def persist(self, session: Session, updates: Dict[str, Any]) -> None:
        for key, value in updates.items():
            if key not in THRESHOLD_FIELDS or value is None:
                continue
            record = session.query(AppSetting).filter(AppSetting.key == key).one_or_none()
            if record:
                record.value = str(value)
            else:
                session.add(AppSetting(key=key, value=str(value)))
        session.commit()
