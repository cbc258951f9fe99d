"""Statistical entity detection: BIO token grouping and model lifecycle.

The token classifier is any callable ``text -> list[Token]``. The default one
wraps a spaCy pipeline and converts its IOB annotations into BIO tokens.

Graceful fallbacks when loading spaCy:
- Try the requested model name (or directory path).
- If unavailable, try ``en_core_web_sm``.
- If still unavailable, fall back to ``spacy.blank('en')`` (no NER) so
  detection yields no model entities and the regex path carries on.
"""

from __future__ import annotations

import threading
import warnings
from contextlib import contextmanager
from dataclasses import dataclass, field
from functools import lru_cache
from importlib import import_module
from pathlib import Path
from typing import Callable, Generic, Iterator, List, Optional, Sequence, Tuple, TypeVar

import spacy

from .errors import DetectionError
from .logging import get_logger
from .types import Entity, EntitySource, EntityType, Token

logger = get_logger(__name__)

T = TypeVar("T")
TokenClassifier = Callable[[str], Sequence[Token]]

SUBWORD_MARKER = "##"

LABEL_MAP = {
    "PER": EntityType.PERSON,
    "PERSON": EntityType.PERSON,
    "LOC": EntityType.LOCATION,
    "LOCATION": EntityType.LOCATION,
    "GPE": EntityType.LOCATION,
    "FAC": EntityType.LOCATION,
    "ORG": EntityType.ORG,
    "MISC": EntityType.MISC,
    "NORP": EntityType.MISC,
    "EVENT": EntityType.MISC,
    "PRODUCT": EntityType.MISC,
    "WORK_OF_ART": EntityType.MISC,
    "LAW": EntityType.MISC,
    "LANGUAGE": EntityType.MISC,
}


def _split_label(label: str) -> Optional[Tuple[str, EntityType]]:
    prefix, sep, name = (label or "").partition("-")
    if not sep or prefix not in ("B", "I"):
        return None
    etype = LABEL_MAP.get(name.upper())
    if etype is None:
        return None
    return prefix, etype


@dataclass
class _OpenEntity:
    text: str
    type: EntityType
    start: int
    end: int
    scores: List[float] = field(default_factory=list)

    def close(self, page: int) -> Optional[Entity]:
        if self.end <= self.start or not self.scores:
            return None
        confidence = sum(self.scores) / len(self.scores)
        return Entity(
            text=self.text.strip(),
            type=self.type,
            page=page,
            start=self.start,
            end=self.end,
            confidence=min(max(confidence, 0.0), 1.0),
            source=EntitySource.MODEL,
        )


def group_tokens(
    tokens: Sequence[Token],
    page: int,
    *,
    min_length: int = 2,
    min_confidence: float = 0.5,
) -> List[Entity]:
    """Group BIO-tagged tokens into entities.

    A token opens a new entity when it carries a ``B-`` label, when its type
    differs from the open entity, or when nothing is open. Continuations
    append their surface form (``##`` sub-word pieces are glued without a
    space) and extend the span. Tokens with unknown labels are skipped without
    closing the open entity.

    Parameters
    ----------
    tokens:
        Classifier output in text order.
    page:
        1-based page number stamped on every entity.
    min_length, min_confidence:
        Post-filter thresholds on trimmed text length and mean score.
    """
    closed: List[Optional[Entity]] = []
    current: Optional[_OpenEntity] = None
    for tok in tokens:
        parsed = _split_label(tok.label)
        if parsed is None:
            continue
        prefix, etype = parsed
        surface = tok.surface_form.strip()
        subword = surface.startswith(SUBWORD_MARKER)
        piece = surface[len(SUBWORD_MARKER):] if subword else surface
        if prefix == "B" or current is None or current.type is not etype:
            if current is not None:
                closed.append(current.close(page))
            current = _OpenEntity(piece, etype, tok.start, tok.end, [tok.score])
        else:
            current.text += ("" if subword else " ") + piece
            current.end = tok.end
            current.scores.append(tok.score)
    if current is not None:
        closed.append(current.close(page))
    return [
        ent
        for ent in closed
        if ent is not None
        and len(ent.text) >= min_length
        and ent.confidence >= min_confidence
    ]


class ModelHandle(Generic[T]):
    """Lazily initialised, reference-counted model owner.

    ``acquire`` builds the model on first use. The build runs under a lock, so
    concurrent callers wait for the same in-flight initialisation instead of
    loading twice. A failed build is remembered and re-raised until
    :meth:`reset` or until the last reference is released. When the reference
    count drops to zero the model is torn down.
    """

    def __init__(
        self,
        factory: Callable[[], T],
        teardown: Optional[Callable[[T], None]] = None,
    ):
        self._factory = factory
        self._teardown = teardown
        self._lock = threading.Lock()
        self._model: Optional[T] = None
        self._error: Optional[Exception] = None
        self._refs = 0
        self.init_count = 0

    @property
    def refcount(self) -> int:
        return self._refs

    @property
    def initialized(self) -> bool:
        return self._model is not None

    def acquire(self) -> T:
        with self._lock:
            self._refs += 1
            try:
                return self._ensure()
            except Exception:
                self._refs -= 1
                raise

    def release(self) -> None:
        with self._lock:
            if self._refs == 0:
                raise RuntimeError("release() called without a matching acquire()")
            self._refs -= 1
            if self._refs == 0:
                self._dispose()

    @contextmanager
    def lease(self) -> Iterator[T]:
        model = self.acquire()
        try:
            yield model
        finally:
            self.release()

    def reset(self) -> None:
        with self._lock:
            self._dispose()

    def close(self) -> None:
        """Tear the model down now, dropping any outstanding references."""
        with self._lock:
            self._refs = 0
            self._dispose()

    def _ensure(self) -> T:
        if self._model is not None:
            return self._model
        if self._error is not None:
            raise self._error
        try:
            model = self._factory()
        except Exception as exc:
            self._error = exc
            raise
        self.init_count += 1
        self._model = model
        return model

    def _dispose(self) -> None:
        model, self._model, self._error = self._model, None, None
        if model is not None and self._teardown is not None:
            self._teardown(model)


@lru_cache(maxsize=4)
def load_spacy(nlp_name: str):
    """Load and cache a spaCy pipeline, falling back to smaller models."""
    name = (nlp_name or "").strip()
    errors = []
    p = Path(name)
    if name and p.exists():
        try:
            return spacy.load(str(p))
        except Exception as e:
            errors.append(f"path load failed: {e}")
    if name:
        try:
            return spacy.load(name)
        except Exception as e:
            errors.append(f"spacy.load failed: {e}")
        # The wheel may be installed but not registered as a spaCy package.
        try:
            pkg = import_module(name)
            if hasattr(pkg, "load"):
                return pkg.load()
        except Exception as e:
            errors.append(f"import_module failed: {e}")
    if name != "en_core_web_sm":
        try:
            return spacy.load("en_core_web_sm")
        except Exception as e:
            errors.append(f"en_core_web_sm load failed: {e}")
    warnings.warn(
        f"spaCy model '{name}' not found and 'en_core_web_sm' not available; "
        f"falling back to blank('en') without NER."
    )
    logger.debug("spaCy load errors", extra={"errors": errors})
    return spacy.blank("en")


def tokens_from_doc(doc, score: float) -> List[Token]:
    """Convert a spaCy ``Doc``'s IOB entity annotations into BIO tokens.

    spaCy tokens glued to the previous token (no whitespace between them) are
    marked as sub-word continuations so grouping reproduces the original
    spelling.
    """
    out: List[Token] = []
    for tok in doc:
        iob = tok.ent_iob_
        if iob not in ("B", "I"):
            continue
        glued = iob == "I" and tok.i > 0 and not doc[tok.i - 1].whitespace_
        out.append(
            Token(
                label=f"{iob}-{tok.ent_type_}",
                score=score,
                surface_form=(SUBWORD_MARKER + tok.text) if glued else tok.text,
                start=tok.idx,
                end=tok.idx + len(tok.text),
            )
        )
    return out


class SpacyTokenClassifier:
    """Token classifier backed by a spaCy pipeline.

    spaCy does not expose per-token probabilities, so every token carries
    ``default_score``.
    """

    def __init__(self, model_name: str = "en_core_web_lg", default_score: float = 0.85):
        self.model_name = model_name
        self.default_score = default_score
        self.nlp = load_spacy(model_name)

    @property
    def has_ner(self) -> bool:
        return "ner" in self.nlp.pipe_names

    def __call__(self, text: str) -> List[Token]:
        if not self.has_ner:
            return []
        return tokens_from_doc(self.nlp(text), self.default_score)


def spacy_handle(model_name: str, default_score: float = 0.85) -> ModelHandle[SpacyTokenClassifier]:
    return ModelHandle(lambda: SpacyTokenClassifier(model_name, default_score))


class ModelDetector:
    """Run a token classifier under a lease and group its output.

    Inference or initialisation failures never propagate: they are logged,
    reported through ``errors`` and the page yields zero model entities.
    """

    def __init__(
        self,
        handle: ModelHandle,
        *,
        min_length: int = 2,
        min_confidence: float = 0.5,
    ):
        self.handle = handle
        self.min_length = min_length
        self.min_confidence = min_confidence

    def detect(
        self, text: str, page: int, errors: Optional[List[Exception]] = None
    ) -> List[Entity]:
        try:
            with self.handle.lease() as classifier:
                tokens = list(classifier(text))
        except Exception as exc:
            err = DetectionError(f"model inference failed: {exc}", page=page, detector="model")
            logger.warning(str(err), extra={"page": page})
            if errors is not None:
                errors.append(err)
            return []
        return group_tokens(
            tokens,
            page,
            min_length=self.min_length,
            min_confidence=self.min_confidence,
        )


__all__ = [
    "LABEL_MAP",
    "ModelDetector",
    "ModelHandle",
    "SpacyTokenClassifier",
    "TokenClassifier",
    "group_tokens",
    "load_spacy",
    "spacy_handle",
    "tokens_from_doc",
]
