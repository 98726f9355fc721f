# tests/test_grouping.py

import itertools
import random

import pytest

from stagesync.core.grouping import generate_groups, group_size_warning, is_group_size_invalid


@pytest.fixture
def names():
    counter = itertools.count(1)
    return lambda: f"group-{next(counter)}"


def members_of(groups):
    return sorted(member for group in groups for member in group.member_ids)


def test_even_split(names):
    ids = [f"s{i}" for i in range(6)]

    groups = generate_groups(ids, 2, names, rng=random.Random(1))

    assert len(groups) == 3
    assert all(len(group.member_ids) == 2 for group in groups)
    assert members_of(groups) == sorted(ids)
    assert [group.name for group in groups] == ["group-1", "group-2", "group-3"]


def test_leftovers_join_last_group(names):
    ids = [f"s{i}" for i in range(7)]

    groups = generate_groups(ids, 3, names, rng=random.Random(2))

    assert [len(group.member_ids) for group in groups] == [3, 4]
    assert members_of(groups) == sorted(ids)


def test_too_few_students_makes_no_groups(names):
    assert generate_groups(["a", "b"], 3, names) == []


def test_duplicate_ids_are_grouped_once(names):
    groups = generate_groups(["a", "b", "a", "c", "d"], 2, names, rng=random.Random(3))

    assert members_of(groups) == ["a", "b", "c", "d"]


def test_same_seed_same_groups(names):
    ids = [f"s{i}" for i in range(10)]

    first = generate_groups(ids, 3, lambda: "g", rng=random.Random(42))
    second = generate_groups(ids, 3, lambda: "g", rng=random.Random(42))

    assert [g.member_ids for g in first] == [g.member_ids for g in second]


def test_tagged_students_stay_together(names):
    red = {"name": "red", "color": "#f00"}
    blue = {"name": "blue", "color": "#00f"}
    tags = {"a": red, "b": red, "c": blue, "d": blue}

    groups = generate_groups(["a", "b", "c", "d"], 2, names, tags=tags, rng=random.Random(5))

    by_tag = {group.tag_name: group for group in groups}
    assert set(by_tag) == {"red", "blue"}
    assert by_tag["red"].member_ids == frozenset({"a", "b"})
    assert by_tag["red"].tag_color == "#f00"
    assert by_tag["blue"].member_ids == frozenset({"c", "d"})


def test_untagged_students_form_their_own_partition(names):
    tags = {"a": {"name": "red", "color": "#f00"}, "b": {"name": "red", "color": "#f00"}}

    groups = generate_groups(["a", "b", "c", "d"], 2, names, tags=tags, rng=random.Random(6))

    untagged = [group for group in groups if group.tag_name is None]
    assert len(untagged) == 1
    assert untagged[0].member_ids == frozenset({"c", "d"})


def test_group_size_must_be_positive(names):
    with pytest.raises(ValueError):
        generate_groups(["a"], 0, names)


def test_is_group_size_invalid():
    assert not is_group_size_invalid(3, 2, 4, ungrouped_count=10)
    assert is_group_size_invalid(1, 2, 4, ungrouped_count=10)
    assert is_group_size_invalid(5, 2, 4, ungrouped_count=10)
    # Without bounds the limits are 1 and the number of ungrouped students
    assert not is_group_size_invalid(10, None, None, ungrouped_count=10)
    assert is_group_size_invalid(11, None, None, ungrouped_count=10)
    assert is_group_size_invalid(0, None, None, ungrouped_count=10)


def test_group_size_warning():
    assert group_size_warning("g", 1, 2, 4) == "Group g is too small (min: 2, current: 1)"
    assert group_size_warning("g", 5, 2, 4) == "Group g is too large (max: 4, current: 5)"
    assert group_size_warning("g", 3, 2, 4) is None
    assert group_size_warning("g", 30, None, None) is None
