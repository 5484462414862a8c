"""In-memory alert feed, most recent first."""

from __future__ import annotations

import logging
from typing import Iterable, Iterator, Literal, Optional

from caregiver.models import Alert

log = logging.getLogger("caregiver.alerts")

TITLE_DOSE_DUE = "Upcoming Dose"
TITLE_LOW_STOCK = "Critical Alert"
TITLE_REMINDER = "Reminder"


class AlertFeed:
    """Alerts are kept newest first and never persisted.

    A low-stock alert is raised once per medicine.  A due-dose alert is
    raised once per medicine per scheduled minute, however often the
    schedule is checked during that minute.
    """

    def __init__(self) -> None:
        self._alerts: list[Alert] = []
        self._low_stock_raised: set[str] = set()
        self._dose_minute = ""
        self._dose_raised: set[str] = set()

    def add(
        self,
        type: Literal["critical", "info"],
        title: str,
        message: str,
        source_id: Optional[str] = None,
        source_type: Optional[Literal["medicine", "reminder"]] = None,
    ) -> Alert:
        alert = Alert(
            type=type,
            title=title,
            message=message,
            source_id=source_id,
            source_type=source_type,
        )
        self._alerts.insert(0, alert)
        log.info("Alert [%s] %s: %s", type, title, message)
        return alert

    def add_low_stock(self, medicine_id: str, message: str) -> Alert | None:
        if medicine_id in self._low_stock_raised:
            return None
        self._low_stock_raised.add(medicine_id)
        return self.add("critical", TITLE_LOW_STOCK, message, medicine_id, "medicine")

    def add_dose_due(self, medicine_id: str, minute: str, message: str) -> Alert | None:
        if minute != self._dose_minute:
            self._dose_minute = minute
            self._dose_raised.clear()
        if medicine_id in self._dose_raised:
            return None
        self._dose_raised.add(medicine_id)
        return self.add("info", TITLE_DOSE_DUE, message, medicine_id, "medicine")

    def get(self, alert_id: str) -> Alert | None:
        return next((a for a in self._alerts if a.id == alert_id), None)

    def remove_for_sources(self, source_ids: Iterable[str]) -> int:
        ids = set(source_ids)
        before = len(self._alerts)
        self._alerts = [a for a in self._alerts if a.source_id not in ids]
        self._low_stock_raised -= ids
        self._dose_raised -= ids
        return before - len(self._alerts)

    def __iter__(self) -> Iterator[Alert]:
        return iter(list(self._alerts))

    def __len__(self) -> int:
        return len(self._alerts)
