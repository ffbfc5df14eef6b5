from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple


@dataclass(frozen=True)
class Appointment:
    id: str
    doctor_name: str = ""
    specialty: str = ""
    date: str = ""  # YYYY-MM-DD as sent by the backend
    time: str = ""  # HH:MM
    image: str = ""  # avatar URL

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "doctorName": self.doctor_name,
            "specialty": self.specialty,
            "date": self.date,
            "time": self.time,
            "image": self.image,
        }


@dataclass(frozen=True)
class AppointmentSnapshot:
    # server order, never re-sorted here
    upcoming: Tuple[Appointment, ...] = field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.upcoming)

    def to_dict(self) -> dict:
        return {"upcoming": [a.to_dict() for a in self.upcoming]}


EMPTY_SNAPSHOT = AppointmentSnapshot()


def _to_str(v: Any) -> str:
    if v is None:
        return ""
    return str(v).strip()


def _pick(raw: dict, *keys: str) -> str:
    for k in keys:
        if k in raw and raw[k] is not None:
            return _to_str(raw[k])
    return ""


def parse_appointment(raw: Any) -> Optional[Appointment]:
    """
    Build an Appointment from one backend entry.
    Accepts camelCase or snake_case keys. Entries without an id are dropped.
    """
    if not isinstance(raw, dict):
        return None
    appt_id = _pick(raw, "id", "_id", "appointment_id", "appointmentId")
    if not appt_id:
        return None
    return Appointment(
        id=appt_id,
        doctor_name=_pick(raw, "doctorName", "doctor_name"),
        specialty=_pick(raw, "specialty", "department_name", "designation"),
        date=_pick(raw, "date"),
        time=_pick(raw, "time"),
        image=_pick(raw, "image", "image_url"),
    )


def parse_snapshot(payload: Any) -> AppointmentSnapshot:
    """
    Accepted shapes:
      {"upcoming": [...]}
      {"data": [...]} / {"data": {"upcoming": [...]}}
      [...]
    An empty list is a valid empty snapshot; any other shape (error bodies
    like {"message": "Unauthenticated."}, None, ...) raises ValueError.
    """
    items: List[Any]
    if isinstance(payload, list):
        items = payload
    elif isinstance(payload, dict) and isinstance(payload.get("upcoming"), list):
        items = payload["upcoming"]
    elif isinstance(payload, dict) and isinstance(payload.get("data"), list):
        items = payload["data"]
    elif isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        return parse_snapshot(payload["data"])
    else:
        raise ValueError(f"unrecognised appointments payload: {str(payload)[:200]}")

    upcoming = []
    for raw in items:
        appt = parse_appointment(raw)
        if appt is not None:
            upcoming.append(appt)
    if not upcoming:
        return EMPTY_SNAPSHOT
    return AppointmentSnapshot(upcoming=tuple(upcoming))
