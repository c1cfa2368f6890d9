from types import SimpleNamespace

from dormalloc.repos.tags import tag_sort_key
from dormalloc.services.selection import bed_labels, gender_pool, next_bed_label, rank_rooms


def _room(number, *, total=4, available=4, gender="Male", vip=False, beds=None):
    return SimpleNamespace(
        room_number=number, gender=gender, total_beds=total, available_beds=available,
        is_vip_room=vip, bed_numbers=beds,
    )


def test_most_occupied_room_first_then_room_number():
    rooms = [
        _room("C", available=4),
        _room("B", available=1),
        _room("A", available=3),
        _room("D", available=1),
    ]
    assert [r.room_number for r in rank_rooms(rooms)] == ["B", "D", "A", "C"]


def test_full_rooms_and_vip_rooms_are_not_candidates_for_regular_registrants():
    rooms = [_room("A", available=0), _room("V", vip=True), _room("B")]
    assert [r.room_number for r in rank_rooms(rooms)] == ["B"]


def test_vip_registrant_prefers_reserved_rooms():
    rooms = [_room("A", available=1), _room("V", vip=True)]
    assert [r.room_number for r in rank_rooms(rooms, is_vip=True)] == ["V", "A"]


def test_cross_gender_pool_ranked_by_occupancy_alone():
    rooms = [_room("M1", total=3, available=3), _room("F1", gender="Female", total=3, available=1)]
    ranked = rank_rooms(rooms)
    assert [r.room_number for r in ranked] == ["F1", "M1"]


def test_gender_pool():
    assert gender_pool("Male") == ("Male",)
    assert gender_pool("Male", True) == ("Male", "Female")
    assert gender_pool("Female", True) == ("Female",)


def test_bed_labels_synthesized_when_missing():
    assert bed_labels(_room("A", total=3)) == ["001", "002", "003"]
    assert bed_labels(_room("V", total=2, vip=True)) == ["VIP001", "VIP002"]


def test_next_bed_label_is_sequential():
    room = _room("A", total=3, available=3, beds=["a", "b", "c"])
    assert next_bed_label(room, []) == "a"
    room.available_beds = 2
    assert next_bed_label(room, ["a"]) == "b"


def test_next_bed_label_reuses_freed_bed():
    # "a" was released, "b" and "c" are still held
    room = _room("A", total=3, available=1, beds=["a", "b", "c"])
    assert next_bed_label(room, ["b", "c"]) == "a"


def test_tag_sort_key_is_numeric():
    assert sorted(["3", "10", "2"], key=tag_sort_key) == ["2", "3", "10"]
    assert sorted(["T-11", "T-9", "X"], key=tag_sort_key) == ["T-9", "T-11", "X"]


def test_tag_sort_key_compares_each_digit_run():
    assert sorted(["2-1", "1-20", "1-3"], key=tag_sort_key) == ["1-3", "1-20", "2-1"]
    assert sorted(["B2", "A10", "A9"], key=tag_sort_key) == ["A9", "A10", "B2"]
