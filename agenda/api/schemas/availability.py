from datetime import date, datetime

from pydantic import BaseModel

from agenda.services.slot_service import Slot


class SlotInfo(BaseModel):
    start_at: datetime
    end_at: datetime

    @classmethod
    def from_slot(cls, slot: Slot) -> "SlotInfo":
        return cls(start_at=slot.start, end_at=slot.end)


class AvailableSlotsResponse(BaseModel):
    date: date
    location_id: int
    provider_id: int | None = None
    duration_minutes: int
    slots: list[SlotInfo]


class DaySlots(BaseModel):
    date: date
    slots: list[SlotInfo]


class SuggestionsResponse(BaseModel):
    location_id: int
    provider_id: int | None = None
    duration_minutes: int
    days: list[DaySlots]  # empty when nothing is free within the horizon
