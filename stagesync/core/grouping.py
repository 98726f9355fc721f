"""
Bulk group generation.

Splits ungrouped students into groups of a requested size, optionally keeping
students that share a tag together. The result is a list of
GroupCreateIntents ready to be previewed and staged.
"""
import random
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from .intents import GroupCreateIntent

NO_TAG = None


def _split(
    subject_ids: Sequence[str],
    group_size: int,
    name_factory: Callable[[], str],
    groups: List[Dict],
    tag: Optional[Dict[str, str]] = None,
) -> None:
    index = 0
    while index <= len(subject_ids) - group_size:
        groups.append({
            "name": name_factory(),
            "member_ids": list(subject_ids[index:index + group_size]),
            "tag": tag,
        })
        index += group_size

    # Leftovers go onto the most recently created group, one at a time,
    # which may belong to an earlier partition
    while index < len(subject_ids) and groups:
        groups[-1]["member_ids"].append(subject_ids[index])
        index += 1


def generate_groups(
    ungrouped_ids: Sequence[str],
    group_size: int,
    name_factory: Callable[[], str],
    tags: Optional[Mapping[str, Dict[str, str]]] = None,
    rng: Optional[random.Random] = None,
) -> List[GroupCreateIntent]:
    """
    Generate groups for every ungrouped student.

    As many full groups as possible are created; extra students are spread
    across the created groups, so uneven counts give larger groups. When there
    are fewer students than `group_size` in total, nobody is grouped.

    Args:
        ungrouped_ids: Subject-ids of students without a group
        group_size: Desired number of members per group
        name_factory: Returns a fresh group name per call
        tags: Optional map of subject-id -> {"name", "color"} of the student's
            first selected tag. Students are grouped within their tag; students
            missing from the map form their own partition.
        rng: Random source for shuffling (seedable in tests)

    Returns:
        List of GroupCreateIntent
    """
    if group_size < 1:
        raise ValueError(f"Group size must be at least 1, got {group_size}")

    rng = rng or random.Random()
    shuffled = list(dict.fromkeys(ungrouped_ids))
    rng.shuffle(shuffled)

    raw_groups: List[Dict] = []
    if not tags:
        _split(shuffled, group_size, name_factory, raw_groups)
    else:
        # Partition keeps first-seen order of tags in the shuffled list
        partitions: Dict[Optional[tuple], List[str]] = {}
        tag_for_key: Dict[Optional[tuple], Optional[Dict[str, str]]] = {NO_TAG: None}
        for subject_id in shuffled:
            tag = tags.get(subject_id)
            key = (tag["name"], tag.get("color")) if tag else NO_TAG
            tag_for_key.setdefault(key, tag)
            partitions.setdefault(key, []).append(subject_id)

        for key, members in partitions.items():
            _split(members, group_size, name_factory, raw_groups, tag_for_key[key])

    return [
        GroupCreateIntent(
            name=group["name"],
            member_ids=frozenset(group["member_ids"]),
            tag_name=group["tag"]["name"] if group["tag"] else None,
            tag_color=group["tag"].get("color") if group["tag"] else None,
        )
        for group in raw_groups
    ]


def is_group_size_invalid(
    size: int,
    min_size: Optional[int],
    max_size: Optional[int],
    ungrouped_count: int,
) -> bool:
    """Whether a requested bulk group size falls outside the assignment's bounds."""
    upper = max_size if max_size is not None else ungrouped_count
    lower = min_size if min_size is not None else 1
    return size > upper or size < lower


def group_size_warning(
    name: str,
    size: int,
    min_size: Optional[int],
    max_size: Optional[int],
) -> Optional[str]:
    """Human-readable warning for a group outside the size bounds, or None."""
    if min_size is not None and size < min_size:
        return f"Group {name} is too small (min: {min_size}, current: {size})"
    if max_size is not None and size > max_size:
        return f"Group {name} is too large (max: {max_size}, current: {size})"
    return None
