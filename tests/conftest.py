from typing import List, Sequence

import fitz
import pytest

import docredact.settings as settings


def make_pdf(
    pages: Sequence[Sequence[str]],
    width: float = 612,
    height: float = 792,
    fontsize: float = 11,
) -> bytes:
    """Build an in-memory PDF with one text line per entry, 20pt apart."""
    doc = fitz.open()
    for lines in pages:
        page = doc.new_page(width=width, height=height)
        y = 72.0
        for line in lines:
            page.insert_text((72, y), line, fontsize=fontsize)
            y += 20
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("DOCREDACT_USE_MODEL", "false")
    monkeypatch.setenv("DOCREDACT_PROGRESS", "false")
    monkeypatch.delenv("DOCREDACT_HMAC_KEY", raising=False)
    monkeypatch.delenv("DOCREDACT_TIER", raising=False)
    settings.reset_settings_cache()
    yield
    settings.reset_settings_cache()


@pytest.fixture
def pdf_factory():
    return make_pdf


@pytest.fixture
def contact_pdf() -> bytes:
    return make_pdf([["Contact john@example.com or call 555-123-4567"]])


def page_texts(data: bytes) -> List[str]:
    with fitz.open(stream=data, filetype="pdf") as doc:
        return [page.get_text() for page in doc]
