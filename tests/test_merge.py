import random

from docredact.merge import entities_overlap, merge_entities
from docredact.types import Entity, EntitySource, EntityType


def _ent(text, start, end, conf, page=1, etype=EntityType.PERSON, source=EntitySource.MODEL):
    return Entity(text, etype, page, start, end, conf, source)


def test_higher_confidence_wins():
    model = _ent("John Smith", 0, 10, 0.6)
    regex = _ent("John Smith", 0, 10, 0.9, etype=EntityType.CUSTOM, source=EntitySource.REGEX)
    merged = merge_entities([model], [regex])
    assert merged == [regex]


def test_lower_confidence_candidate_is_dropped():
    strong = _ent("John Smith", 0, 10, 0.95)
    weak = _ent("Smith", 5, 10, 0.5)
    assert merge_entities([strong, weak]) == [strong]


def test_equal_confidence_prefers_longer_text():
    short = _ent("Bob", 0, 3, 0.8)
    longer = _ent("Bob Lee", 0, 7, 0.8)
    assert merge_entities([short], [longer]) == [longer]
    assert merge_entities([longer], [short]) == [longer]


def test_disjoint_and_cross_page_entities_are_kept():
    a = _ent("Ann", 0, 3, 0.9)
    b = _ent("Ben", 10, 13, 0.9)
    c = _ent("Ann", 0, 3, 0.9, page=2)
    merged = merge_entities([c, b], [a])
    assert merged == [a, b, c]


def test_adjacent_spans_do_not_overlap():
    a = _ent("ab", 0, 2, 0.9)
    b = _ent("cd", 2, 4, 0.9)
    assert not entities_overlap(a, b)
    assert merge_entities([a, b]) == [a, b]


def test_merged_output_is_disjoint_for_random_input():
    rng = random.Random(1234)
    for _ in range(200):
        inputs = []
        for _ in range(rng.randint(0, 25)):
            start = rng.randint(0, 80)
            end = start + rng.randint(1, 15)
            inputs.append(
                _ent("x" * (end - start), start, end, round(rng.random(), 2), page=rng.randint(1, 3))
            )
        merged = merge_entities(inputs[: len(inputs) // 2], inputs[len(inputs) // 2:])
        assert all(m in inputs for m in merged)
        for i, a in enumerate(merged):
            for b in merged[i + 1:]:
                assert not entities_overlap(a, b)
        for cand in inputs:
            if not any(entities_overlap(cand, o) for o in inputs if o is not cand):
                assert cand in merged
