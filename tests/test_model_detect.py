import threading
import time

import pytest
import spacy
from spacy.tokens import Span

from docredact.errors import DetectionError
from docredact.model_detect import ModelDetector, ModelHandle, group_tokens, tokens_from_doc
from docredact.types import EntitySource, EntityType, Token


def test_group_tokens_joins_bio_sequence():
    tokens = [
        Token("B-PER", 0.9, "John", 8, 12),
        Token("I-PER", 0.8, "Smith", 13, 18),
    ]
    ents = group_tokens(tokens, page=1)
    assert len(ents) == 1
    ent = ents[0]
    assert ent.text == "John Smith"
    assert ent.type is EntityType.PERSON
    assert (ent.start, ent.end) == (8, 18)
    assert ent.confidence == pytest.approx(0.85)
    assert ent.source is EntitySource.MODEL


def test_group_tokens_glues_subword_pieces():
    tokens = [
        Token("B-ORG", 0.9, "Acme", 0, 4),
        Token("I-ORG", 0.9, "##Corp", 4, 8),
    ]
    assert [e.text for e in group_tokens(tokens, 1)] == ["AcmeCorp"]


def test_group_tokens_type_change_starts_new_entity():
    tokens = [
        Token("B-PER", 0.9, "Alice", 0, 5),
        Token("I-LOC", 0.9, "Paris", 6, 11),
    ]
    ents = group_tokens(tokens, 1)
    assert [(e.text, e.type) for e in ents] == [
        ("Alice", EntityType.PERSON),
        ("Paris", EntityType.LOCATION),
    ]


def test_group_tokens_skips_unknown_labels_without_closing():
    tokens = [
        Token("B-PER", 0.9, "Jean", 0, 4),
        Token("O", 0.9, "-", 4, 5),
        Token("I-PER", 0.9, "Luc", 5, 8),
    ]
    ents = group_tokens(tokens, 1)
    assert [e.text for e in ents] == ["Jean Luc"]
    assert ents[0].end == 8


def test_group_tokens_applies_thresholds():
    tokens = [
        Token("B-PER", 0.3, "Weak", 0, 4),
        Token("B-LOC", 0.9, "X", 5, 6),
        Token("B-ORG", 0.7, "Globex", 7, 13),
    ]
    ents = group_tokens(tokens, 1, min_length=2, min_confidence=0.5)
    assert [e.text for e in ents] == ["Globex"]


def test_tokens_from_spacy_doc():
    nlp = spacy.blank("en")
    doc = nlp("John Smith lives in Paris")
    doc.ents = [Span(doc, 0, 2, label="PERSON"), Span(doc, 4, 5, label="GPE")]
    ents = group_tokens(tokens_from_doc(doc, 0.85), 1)
    assert [(e.text, e.type, e.start, e.end) for e in ents] == [
        ("John Smith", EntityType.PERSON, 0, 10),
        ("Paris", EntityType.LOCATION, 20, 25),
    ]


def test_handle_initialises_once_and_tears_down_on_last_release():
    built, torn = [], []
    handle = ModelHandle(lambda: built.append(1) or "model", teardown=torn.append)

    assert handle.acquire() == "model"
    assert handle.acquire() == "model"
    assert handle.refcount == 2
    assert handle.init_count == 1

    handle.release()
    assert handle.initialized
    handle.release()
    assert not handle.initialized
    assert torn == ["model"]
    assert len(built) == 1


def test_handle_concurrent_acquire_is_single_flight():
    calls = []

    def factory():
        calls.append(1)
        time.sleep(0.05)
        return object()

    handle = ModelHandle(factory)
    results = []
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        results.append(handle.acquire())

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(calls) == 1
    assert len({id(r) for r in results}) == 1
    assert handle.refcount == 8


def test_handle_remembers_failure_until_reset():
    attempts = []

    def factory():
        attempts.append(1)
        if len(attempts) == 1:
            raise RuntimeError("weights missing")
        return "model"

    handle = ModelHandle(factory)
    with pytest.raises(RuntimeError):
        handle.acquire()
    with pytest.raises(RuntimeError):
        handle.acquire()
    assert len(attempts) == 1
    assert handle.refcount == 0

    handle.reset()
    with handle.lease() as model:
        assert model == "model"
    assert len(attempts) == 2


def test_handle_release_without_acquire():
    with pytest.raises(RuntimeError):
        ModelHandle(lambda: "m").release()


def test_model_detector_groups_classifier_output():
    def classify(text):
        i = text.index("Jane")
        return [Token("B-PER", 0.95, "Jane", i, i + 4), Token("I-PER", 0.95, "Roe", i + 5, i + 8)]

    det = ModelDetector(ModelHandle(lambda: classify))
    ents = det.detect("Signed by Jane Roe", page=4)
    assert [(e.text, e.page, e.start) for e in ents] == [("Jane Roe", 4, 10)]


def test_model_detector_failure_degrades_to_no_entities():
    def classify(text):
        raise RuntimeError("inference crashed")

    errors = []
    ents = ModelDetector(ModelHandle(lambda: classify)).detect("text", 2, errors)
    assert ents == []
    assert len(errors) == 1
    assert isinstance(errors[0], DetectionError)
    assert errors[0].page == 2
    assert errors[0].detector == "model"


def test_handle_close_drops_references():
    torn = []
    handle = ModelHandle(lambda: "model", teardown=torn.append)
    handle.acquire()
    handle.acquire()
    handle.close()
    assert handle.refcount == 0
    assert not handle.initialized
    assert torn == ["model"]
