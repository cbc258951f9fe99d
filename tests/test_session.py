import threading
from concurrent.futures import CancelledError, ThreadPoolExecutor

import fitz
import pytest

from conftest import make_pdf, page_texts
from docredact.errors import InputFormatError, PatternCompileError, TierLimitError
from docredact.model_detect import ModelHandle
from docredact.pipeline import RedactionSession, RunConfig, redacted_file_name
from docredact.redact import WATERMARK_TEXT
from docredact.tier import TierLimits
from docredact.types import EntityType, RedactionStatus, Token


def _cfg(**kw):
    base = dict(use_model=False, show_progress=False, workers=2)
    base.update(kw)
    return RunConfig(**base)


def _drawings(data):
    with fitz.open(stream=data, filetype="pdf") as doc:
        return [len(p.get_drawings()) for p in doc]


def test_custom_pattern_quota():
    session = RedactionSession(_cfg(), TierLimits(max_custom_patterns=1))
    session.add_custom_pattern("emp", r"EMP-\d+")
    with pytest.raises(TierLimitError, match="allows only 1 custom patterns"):
        session.add_custom_pattern("other", r"X\d")
    assert [p.name for p in session.custom_patterns] == ["emp"]


def test_invalid_pattern_is_never_stored():
    session = RedactionSession(_cfg())
    with pytest.raises(PatternCompileError):
        session.add_custom_pattern("bad", "(")
    assert session.custom_patterns == []


def test_update_and_remove_custom_pattern():
    session = RedactionSession(_cfg())
    session.add_custom_pattern("emp", r"EMP-\d+")
    updated = session.update_custom_pattern("emp", enabled=False)
    assert updated.enabled is False
    assert updated.pattern == r"EMP-\d+"
    with pytest.raises(PatternCompileError):
        session.update_custom_pattern("emp", pattern="[")
    session.remove_custom_pattern("emp")
    assert session.custom_patterns == []
    with pytest.raises(KeyError):
        session.remove_custom_pattern("emp")


def test_page_quota(pdf_factory):
    session = RedactionSession(_cfg(), TierLimits(max_pages=1))
    with pytest.raises(TierLimitError) as info:
        session.load_document(pdf_factory([["a"], ["b"]]))
    assert "Maximum 1 pages allowed. This document has 2 pages." in str(info.value)
    assert session.document is None


def test_load_rejects_non_pdf():
    with pytest.raises(InputFormatError):
        RedactionSession(_cfg()).load_document(b"GIF89a")


def test_process_populates_ledger_and_export(contact_pdf):
    with RedactionSession(_cfg()) as session:
        session.load_document(contact_pdf, "contact.pdf")
        res = session.process()
        assert len(session.ledger.boxes) == len(res.boxes) == 2
        assert session.ledger.confirm_all_visible() == 2
        out = session.export().result()
    assert out.startswith(b"%PDF")
    assert _drawings(out) == [2]
    assert session.output_file_name() == "contact_redacted.pdf"


def test_export_covers_text_on_rotated_page():
    doc = fitz.open()
    page = doc.new_page(width=612, height=792)
    page.insert_text((72, 100), "Contact john@example.com today", fontsize=11)
    page.set_rotation(90)
    src = doc.tobytes()
    doc.close()

    with RedactionSession(_cfg()) as session:
        session.load_document(src, "rotated.pdf")
        session.process()
        session.ledger.confirm_all_visible()
        out = session.export().result()

    with fitz.open(stream=out, filetype="pdf") as doc:
        page = doc[0]
        assert page.rotation == 90
        (word,) = [fitz.Rect(w[:4]) for w in page.get_text("words") if "@" in w[4]]
        fills = [d["rect"] for d in page.get_drawings() if d.get("fill") is not None]
        middle = fitz.Point((word.x0 + word.x1) / 2, (word.y0 + word.y1) / 2)
        assert any(r.contains(middle) for r in fills)


def test_patterns_persist_across_documents(pdf_factory):
    with RedactionSession(_cfg()) as session:
        session.add_custom_pattern("emp", r"EMP-\d{4}")
        session.load_document(pdf_factory([["nothing here"]]))
        session.process()
        session.load_document(pdf_factory([["Badge EMP-1234"]]))
        assert session.ledger.boxes == []
        session.process()
        assert [e.type for e in session.ledger.entities] == [EntityType.CUSTOM]


def test_export_uses_snapshot_taken_at_submit(contact_pdf):
    executor = ThreadPoolExecutor(max_workers=1)
    gate = threading.Event()
    executor.submit(gate.wait)
    try:
        session = RedactionSession(_cfg(), export_executor=executor)
        session.load_document(contact_pdf)
        session.process()
        session.ledger.confirm_all_visible()
        future = session.export()
        session.ledger.set_all_status(RedactionStatus.REJECTED)
        gate.set()
        out = future.result(timeout=30)
    finally:
        gate.set()
        executor.shutdown()
    assert _drawings(out) == [2]


def test_tier_forces_watermark(contact_pdf):
    with RedactionSession(_cfg(), TierLimits(name="trial", watermark_required=True)) as session:
        session.load_document(contact_pdf)
        out = session.export(watermark=False).result()
    assert WATERMARK_TEXT in page_texts(out)[0]


def test_cancel_discards_in_flight_results(contact_pdf):
    session = RedactionSession(_cfg(use_model=True, workers=1))
    calls = []

    def classify(text):
        calls.append(text)
        if len(calls) == 1:
            session.cancel()
        return [Token("B-PER", 0.9, "Contact", 0, 7)]

    session.model_handle = ModelHandle(lambda: classify)
    session.load_document(contact_pdf)
    with pytest.raises(CancelledError):
        session.process()
    assert session.ledger.entities == []

    res = session.process()
    assert any(e.type is EntityType.PERSON for e in res.entities)
    assert len(session.ledger.entities) == len(res.entities)


def test_new_document_invalidates_running_process(contact_pdf, pdf_factory):
    other = pdf_factory([["second document"]])
    session = RedactionSession(_cfg(use_model=True, workers=1))

    def classify(text):
        if "Contact" in text:
            session.load_document(other)
        return []

    session.model_handle = ModelHandle(lambda: classify)
    session.load_document(contact_pdf)
    with pytest.raises(CancelledError):
        session.process()
    assert session.ledger.boxes == []
    assert session.document == other


def test_open_survives_model_failure(contact_pdf):
    def broken():
        raise OSError("model files missing")

    session = RedactionSession(_cfg(use_model=True), model_handle=ModelHandle(broken))
    with session:
        session.load_document(contact_pdf)
        res = session.process()
    assert [e.type for e in res.entities] == [EntityType.EMAIL, EntityType.PHONE]
    assert res.pages[0].errors[0]["detector"] == "model"


def test_open_holds_model_lease():
    handle = ModelHandle(lambda: (lambda text: []))
    with RedactionSession(_cfg(use_model=True), model_handle=handle):
        assert handle.refcount == 1
        assert handle.initialized
    assert handle.refcount == 0


def test_clear_document(contact_pdf):
    session = RedactionSession(_cfg())
    session.load_document(contact_pdf)
    session.process()
    session.clear_document()
    assert session.document is None
    assert session.ledger.boxes == []
    with pytest.raises(RuntimeError):
        session.process()


@pytest.mark.parametrize(
    "name, expected",
    [
        ("report.pdf", "report_redacted.pdf"),
        ("archive.tar.pdf", "archive.tar_redacted.pdf"),
        ("README", "README_redacted"),
    ],
)
def test_redacted_file_name(name, expected):
    assert redacted_file_name(name) == expected
