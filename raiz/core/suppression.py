"""
Suppression overlay.

Findings are never edited to hide them. Suppression is an append-only log of
state transitions replayed at read time; reports consult it through
``is_suppressed`` when building the active view. Durable storage belongs to
whoever owns the log (see ``to_records`` / ``from_records``).
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, List, Optional, Protocol

from raiz.errors import SuppressionError


class SuppressionState(str, Enum):
    ACTIVE = "ACTIVE"
    SUPPRESSED = "SUPPRESSED"
    UNSUPPRESSED = "UNSUPPRESSED"


ALLOWED_TRANSITIONS = {
    SuppressionState.ACTIVE: {SuppressionState.SUPPRESSED},
    SuppressionState.SUPPRESSED: {SuppressionState.UNSUPPRESSED},
    SuppressionState.UNSUPPRESSED: {SuppressionState.ACTIVE, SuppressionState.SUPPRESSED},
}


class SuppressionStore(Protocol):
    def is_suppressed(self, finding_id: str) -> bool:
        ...


@dataclass(frozen=True)
class SuppressionEvent:
    finding_id: str
    state: SuppressionState
    reason: str = ""
    justification: str = ""
    actor: str = ""
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class SuppressionLog:
    def __init__(self, events: Optional[Iterable[SuppressionEvent]] = None) -> None:
        self._events: List[SuppressionEvent] = []
        for event in events or ():
            self._append(event)

    @property
    def events(self) -> List[SuppressionEvent]:
        return list(self._events)

    def history(self, finding_id: str) -> List[SuppressionEvent]:
        return [e for e in self._events if e.finding_id == finding_id]

    def state(self, finding_id: str) -> SuppressionState:
        current = SuppressionState.ACTIVE
        for event in self._events:
            if event.finding_id == finding_id:
                current = event.state
        return current

    def is_suppressed(self, finding_id: str) -> bool:
        return self.state(finding_id) == SuppressionState.SUPPRESSED

    def suppress(self, finding_id: str, reason: str, justification: str, actor: str = "") -> SuppressionEvent:
        return self._append(SuppressionEvent(finding_id, SuppressionState.SUPPRESSED,
                                             reason.strip(), justification.strip(), actor))

    def unsuppress(self, finding_id: str, reason: str = "", actor: str = "") -> SuppressionEvent:
        return self._append(SuppressionEvent(finding_id, SuppressionState.UNSUPPRESSED, reason.strip(), actor=actor))

    def reactivate(self, finding_id: str, actor: str = "") -> SuppressionEvent:
        return self._append(SuppressionEvent(finding_id, SuppressionState.ACTIVE, actor=actor))

    def _append(self, event: SuppressionEvent) -> SuppressionEvent:
        current = self.state(event.finding_id)
        if event.state not in ALLOWED_TRANSITIONS[current]:
            raise SuppressionError(
                f"cannot move finding {event.finding_id} from {current.value} to {event.state.value}"
            )
        if event.state == SuppressionState.SUPPRESSED and not (event.reason and event.justification):
            raise SuppressionError("suppression requires a reason and a justification")

        self._events.append(event)
        logging.info(f"Finding {event.finding_id}: {current.value} -> {event.state.value}")
        return event

    def to_records(self) -> List[Dict[str, str]]:
        return [
            {
                "finding_id": e.finding_id,
                "state": e.state.value,
                "reason": e.reason,
                "justification": e.justification,
                "actor": e.actor,
                "at": e.at.isoformat(),
            }
            for e in self._events
        ]

    @classmethod
    def from_records(cls, records: Iterable[Dict[str, str]]) -> "SuppressionLog":
        events = []
        for rec in records:
            try:
                events.append(SuppressionEvent(
                    finding_id=rec["finding_id"],
                    state=SuppressionState(rec["state"]),
                    reason=rec.get("reason", ""),
                    justification=rec.get("justification", ""),
                    actor=rec.get("actor", ""),
                    at=datetime.fromisoformat(rec["at"]) if rec.get("at") else datetime.now(timezone.utc),
                ))
            except (KeyError, ValueError) as e:
                raise SuppressionError(f"malformed suppression record {rec!r}: {e}")
        return cls(events)
