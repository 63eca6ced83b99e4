# slot_engine.py
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from .constants import BLOCKING_STATUSES, ConsultationType


@dataclass(frozen=True)
class Slot:
    start: time
    end: time
    is_available: bool = True

    def to_dict(self):
        return {
            "slot_start": self.start.strftime("%H:%M:%S"),
            "slot_end": self.end.strftime("%H:%M:%S"),
            "is_available": self.is_available,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            start=time.fromisoformat(data["slot_start"]),
            end=time.fromisoformat(data["slot_end"]),
            is_available=data["is_available"],
        )


def to_minutes(t: time) -> int:
    return t.hour * 60 + t.minute


def from_minutes(minutes: int) -> time:
    return time(minutes // 60, minutes % 60)


def day_of_week(on_date: date) -> int:
    """Day index used by schedule rules: 0 = Sunday ... 6 = Saturday."""
    return (on_date.weekday() + 1) % 7


def overlaps(a_start, a_end, b_start, b_end) -> bool:
    """Half-open interval overlap, [a_start, a_end) against [b_start, b_end)."""
    return a_start < b_end and b_start < a_end


def _value(member):
    return member.value if isinstance(member, ConsultationType) else member


def rule_applies(rule, dow: int, consultation_type) -> bool:
    return rule.day_of_week == dow and _value(rule.consultation_type) in (
        _value(consultation_type),
        ConsultationType.BOTH.value,
    )


def merge_windows(windows: Iterable[Tuple[int, int]]) -> List[Tuple[int, int]]:
    """Union overlapping or touching minute windows."""
    merged = []
    for start, end in sorted(windows):
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def partition(start: int, end: int, duration: int) -> List[Tuple[int, int]]:
    """Cut a window into back-to-back slots, dropping a short remainder."""
    if duration <= 0:
        raise ValueError("slot duration must be positive")
    slots = []
    while start + duration <= end:
        slots.append((start, start + duration))
        start += duration
    return slots


def _overrides_for(overrides, on_date: date):
    return [o for o in overrides if o.override_date == on_date]


def _has_range(override) -> bool:
    return override.start_time is not None and override.end_time is not None


def _raw_windows(rules, overrides, dow, consultation_type, default_duration) -> Dict[int, List[Tuple[int, int]]]:
    windows = {}
    for rule in rules:
        if rule_applies(rule, dow, consultation_type):
            windows.setdefault(rule.slot_duration_minutes, []).append(
                (to_minutes(rule.start_time), to_minutes(rule.end_time))
            )

    # Extra windows opened by the doctor for this date only
    for override in overrides:
        if not override.is_blocked and _has_range(override):
            windows.setdefault(default_duration, []).append(
                (to_minutes(override.start_time), to_minutes(override.end_time))
            )
    return windows


def generate_slots(
        rules,
        overrides,
        bookings,
        on_date: date,
        consultation_type,
        default_duration_minutes: int = 30,
        include_unavailable: bool = False,
) -> List[Slot]:
    """
    Build the slot grid of one doctor for one date, before any clock-based filtering.

    :param rules: Weekly schedule rules of the doctor (any day, any type).
    :param overrides: Availability overrides of the doctor; only those for on_date are used.
    :param bookings: Bookings of the doctor; only blocking ones on on_date conflict.
    :param on_date: The date to compute.
    :param consultation_type: Requested type, 'in_person' or 'video'.
    :param default_duration_minutes: Slot length used for override-added windows.
    :param include_unavailable: Keep booked slots, flagged is_available=False.
    :return: Slots sorted by start time, never overlapping each other.
    """
    day_overrides = _overrides_for(overrides, on_date)
    if any(o.is_blocked and not _has_range(o) for o in day_overrides):
        return []

    blocked = [
        (to_minutes(o.start_time), to_minutes(o.end_time))
        for o in day_overrides
        if o.is_blocked and _has_range(o)
    ]

    windows = _raw_windows(rules, day_overrides, day_of_week(on_date), consultation_type, default_duration_minutes)

    candidates = []
    for duration, raw in windows.items():
        for start, end in merge_windows(raw):
            candidates.extend(partition(start, end, duration))

    candidates = [
        (start, end) for start, end in candidates
        if not any(overlaps(start, end, b_start, b_end) for b_start, b_end in blocked)
    ]

    # Rules with different durations can produce overlapping slots; the
    # earliest-starting slot wins.
    grid = []
    for start, end in sorted(set(candidates)):
        if grid and start < grid[-1][1]:
            continue
        grid.append((start, end))

    taken = [
        (to_minutes(b.start_time), to_minutes(b.end_time))
        for b in bookings
        if b.appointment_date == on_date and b.status in BLOCKING_STATUSES
    ]

    slots = []
    for start, end in grid:
        available = not any(overlaps(start, end, t_start, t_end) for t_start, t_end in taken)
        if available or include_unavailable:
            slots.append(Slot(from_minutes(start), from_minutes(end), available))
    return slots


def filter_past(
        slots: List[Slot],
        on_date: date,
        now: datetime,
        lead_minutes: int = 0,
        include_unavailable: bool = False,
) -> List[Slot]:
    """Mark (or drop) slots that do not start after now + lead_minutes."""
    cutoff = now + timedelta(minutes=lead_minutes)
    result = []
    for slot in slots:
        if slot.is_available and datetime.combine(on_date, slot.start) <= cutoff:
            slot = Slot(slot.start, slot.end, False)
        if slot.is_available or include_unavailable:
            result.append(slot)
    return result


def compute_available_slots(
        rules,
        overrides,
        bookings,
        on_date: date,
        consultation_type,
        now: datetime,
        lead_minutes: int = 0,
        default_duration_minutes: int = 30,
        include_unavailable: bool = False,
) -> List[Slot]:
    slots = generate_slots(
        rules, overrides, bookings, on_date, consultation_type,
        default_duration_minutes=default_duration_minutes,
        include_unavailable=include_unavailable,
    )
    return filter_past(slots, on_date, now, lead_minutes, include_unavailable=include_unavailable)


def find_slot(slots: Iterable[Slot], start: time, end: time) -> Optional[Slot]:
    for slot in slots:
        if slot.start == start and slot.end == end:
            return slot
    return None
