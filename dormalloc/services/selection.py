"""Room and bed selection policy shared by the allocator, the sweeper and edits.

Room-completion priority: fill the most occupied room first, ties broken by
ascending room number, so partially occupied rooms close before new ones open.
"""
from __future__ import annotations

from typing import Iterable, Protocol, Sequence, Tuple

# Which room genders a registrant may be placed in when cross-gender is allowed.
CROSS_GENDER_POOL = {
    "Male": ("Male", "Female"),
    "Female": ("Female",),
}


class RoomLike(Protocol):
    room_number: str
    gender: str
    total_beds: int
    available_beds: int
    is_vip_room: bool
    bed_numbers: Sequence[str] | None


def gender_pool(gender: str, allow_cross_gender: bool = False) -> Tuple[str, ...]:
    if allow_cross_gender:
        return CROSS_GENDER_POOL.get(gender, (gender,))
    return (gender,)


def vip_allows(room: RoomLike, is_vip: bool) -> bool:
    """Reserved rooms only take VIP registrants; VIPs may take any room."""
    return is_vip or not room.is_vip_room


def room_priority_key(room: RoomLike) -> Tuple[int, str]:
    return (-(room.total_beds - room.available_beds), room.room_number)


def rank_rooms(rooms: Iterable[RoomLike], *, is_vip: bool = False) -> list:
    """Eligible rooms with free beds, best candidate first.

    The whole gender pool is ranked together by completion priority; VIP
    registrants see reserved rooms before regular ones.
    """
    eligible = [r for r in rooms if r.available_beds > 0 and vip_allows(r, is_vip)]
    return sorted(
        eligible,
        key=lambda r: (
            not (is_vip and r.is_vip_room),
            *room_priority_key(r),
        ),
    )


def bed_labels(room: RoomLike) -> list[str]:
    labels = list(room.bed_numbers or [])
    prefix = "VIP" if room.is_vip_room else ""
    # synthesize any labels missing from a short / absent list
    for i in range(len(labels), room.total_beds):
        labels.append(f"{prefix}{i + 1:03d}")
    return labels


def next_bed_label(room: RoomLike, occupied: Iterable[str]) -> str:
    """First label in bed order not held by a current occupant.

    With no releases this is the label at index (total_beds - available_beds).
    """
    labels = bed_labels(room)
    taken = set(occupied)
    for label in labels:
        if label not in taken:
            return label
    # counter and occupants disagree; keep the positional label
    start = room.total_beds - room.available_beds
    return labels[min(start, len(labels) - 1)]
