import pandas as pd
import pytest

from docredact.align import layout_from_tsv, map_entities, map_to_boxes
from docredact.types import Entity, EntitySource, EntityType, PageLayout, PositionedFragment


def _ent(text, page=1, start=0):
    return Entity(text, EntityType.PERSON, page, start, start + len(text), 0.9, EntitySource.MODEL)


def test_single_fragment_proportional_box():
    frags = [PositionedFragment("Contact John Doe today", 10, 20, 220, 12)]
    (rect,) = map_to_boxes(_ent("John Doe", start=8), frags)
    assert rect.x == pytest.approx(85)
    assert rect.y == pytest.approx(15)
    assert rect.width == pytest.approx(90)
    assert rect.height == pytest.approx(22)


def test_cross_fragment_union():
    frags = [
        PositionedFragment("Contact John", 10, 20, 120, 12),
        PositionedFragment("Doe today", 140, 20, 90, 12),
    ]
    (rect,) = map_to_boxes(_ent("John Doe", start=8), frags)
    assert rect.x == pytest.approx(85)
    assert rect.width == pytest.approx(90)
    assert rect.y == pytest.approx(15)
    assert rect.height == pytest.approx(22)


def test_cross_fragment_spanning_lines_covers_both():
    frags = [
        PositionedFragment("Dear Mary", 10, 20, 90, 10),
        PositionedFragment("Ann Smith,", 10, 40, 100, 10),
    ]
    (rect,) = map_to_boxes(_ent("Mary Ann"), frags, padding=0)
    assert rect.y == pytest.approx(20)
    assert rect.bottom == pytest.approx(50)
    assert rect.x == pytest.approx(10)
    assert rect.right == pytest.approx(100)


def test_first_occurrence_is_used():
    frags = [
        PositionedFragment("Bob", 0, 0, 30, 10),
        PositionedFragment("Bob", 0, 100, 30, 10),
    ]
    (rect,) = map_to_boxes(_ent("Bob", start=4), frags, padding=0)
    assert rect.y == 0


def test_unmatched_text_yields_no_box():
    frags = [PositionedFragment("Contact John Doe today", 10, 20, 220, 12)]
    assert map_to_boxes(_ent("Jane"), frags) == []


def test_map_entities_collects_misses():
    layout = PageLayout(1, "Contact John", [PositionedFragment("Contact John", 10, 20, 120, 12)])
    found = _ent("John", start=8)
    missing = _ent("Jane")
    other_page = _ent("John", page=2)
    boxes, misses = map_entities([found, missing, other_page], [layout])

    assert [b.entity_id for b in boxes] == [found.id]
    assert boxes[0].page == 1
    assert boxes[0].status.value == "pending"
    assert {m.entity_id for m in misses} == {missing.id, other_page.id}


def test_layout_from_ocr_table():
    df = pd.DataFrame(
        {
            "text": ["Hello", None, "  ", "World"],
            "left": [10, 0, 0, 70],
            "top": [5, 0, 0, 5],
            "width": [50, 0, 0, 50],
            "height": [12, 0, 0, 12],
        }
    )
    layout = layout_from_tsv(1, df, width=200, height=100)
    assert layout.full_text == "Hello World"
    assert [f.x for f in layout.fragments] == [10.0, 70.0]

    (rect,) = map_to_boxes(_ent("World"), layout.fragments, padding=0)
    assert (rect.x, rect.width) == (70.0, 50.0)
