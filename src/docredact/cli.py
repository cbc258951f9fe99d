"""Command-line interface for DocRedact.

Provides:
- `detect`: Find entities in a PDF and optionally write them as JSON.
- `run`: Detect, confirm by entity type and write a redacted PDF.
- `preview`: Write a PDF (and optionally PNGs) outlining every detected box.
"""

from pathlib import Path
from typing import Dict, List, NoReturn, Optional

import orjson
import typer
from rich import print

from .audit import write_audit
from .errors import DocRedactError, PatternCompileError
from .pipeline import RedactionSession, RunConfig, build_model_detector, process_document
from .regex_detect import CustomPattern
from .settings import get_settings
from .tier import resolve_tier
from .types import ENTITY_LABELS, EntityType

app = typer.Typer(add_completion=False, help="DocRedact PDF PII Redactor")


def _parse_pattern(raw: str) -> CustomPattern:
    name, sep, source = raw.partition("=")
    if not sep or not name:
        raise typer.BadParameter(f"expected NAME=REGEX, got {raw!r}")
    try:
        return CustomPattern(name=name, pattern=source)
    except PatternCompileError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _parse_type(value: str) -> EntityType:
    key = value.strip().upper()
    if key in EntityType.__members__:
        return EntityType[key]
    try:
        return EntityType(key)
    except ValueError:
        choices = ", ".join(t.name for t in EntityType)
        raise typer.BadParameter(f"unknown entity type {value!r} (choose from {choices})")


def _config(use_model: bool) -> RunConfig:
    cfg = RunConfig.from_settings()
    cfg.use_model = use_model and cfg.use_model
    return cfg


def _fail(exc: Exception) -> NoReturn:
    print(f"[red]Error:[/red] {exc}")
    raise typer.Exit(code=1)


def _counts(entities) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for e in entities:
        label = ENTITY_LABELS[e.type]
        counts[label] = counts.get(label, 0) + 1
    return counts


@app.command()
def detect(
    input: str = typer.Option(..., "--input", "-i", help="Input PDF path"),
    meta: Optional[str] = typer.Option(None, "--meta", help="Write per-page results as JSON"),
    pattern: Optional[List[str]] = typer.Option(
        None, "--pattern", "-p", help="Custom pattern NAME=REGEX (repeatable)"
    ),
    model: bool = typer.Option(True, "--model/--no-model", help="Enable model NER detection"),
):
    """Detect entities in a PDF and report them.

    Parameters
    ----------
    input:
        PDF to scan.
    meta:
        Optional JSON output with entities, boxes and errors per page.
    pattern:
        Extra regular expressions, each given as ``NAME=REGEX``.
    model:
        Enable/disable the statistical model.
    """
    patterns = [_parse_pattern(p) for p in pattern or []]
    cfg = _config(model)
    try:
        res = process_document(
            Path(input).read_bytes(), cfg, build_model_detector(cfg), patterns
        )
    except (DocRedactError, OSError) as exc:
        _fail(exc)
    for label, n in sorted(_counts(res.entities).items()):
        print(f"[cyan]{label}:[/cyan] {n}")
    print(f"[green]Entities:[/green] {len(res.entities)}  [green]Boxes:[/green] {len(res.boxes)}")
    if res.misses:
        print(f"[yellow]Unmapped:[/yellow] {len(res.misses)}")
    if meta:
        payload = {"input": input, "pages": [p.model_dump() for p in res.pages]}
        Path(meta).write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2))
        print(f"[green]Details:[/green] {meta}")


@app.command()
def run(
    input: str = typer.Option(..., "--input", "-i", help="Input PDF path"),
    output: str = typer.Option(..., "--output", "-o", help="Output redacted PDF path"),
    confirm: Optional[List[str]] = typer.Option(
        None, "--confirm", "-c", help="Entity type to confirm (repeatable; default: active types)"
    ),
    watermark: bool = typer.Option(False, help="Stamp a watermark on every page"),
    tier: Optional[str] = typer.Option(None, help="Tier name or YAML path (e.g., free, pro)"),
    pattern: Optional[List[str]] = typer.Option(
        None, "--pattern", "-p", help="Custom pattern NAME=REGEX (repeatable)"
    ),
    model: bool = typer.Option(True, "--model/--no-model", help="Enable model NER detection"),
):
    """Redact a PDF: detect, confirm boxes by type, apply, write meta + audit.

    Parameters
    ----------
    input:
        PDF to redact.
    output:
        Path of the sanitised PDF.
    confirm:
        Entity types whose boxes are confirmed. Without it every box of an
        active (default) type is confirmed.
    watermark:
        Request the watermark; some tiers force it.
    tier:
        Quota set applied to the document and patterns.
    """
    types = [_parse_type(t) for t in confirm or []]
    customs = [_parse_pattern(p) for p in pattern or []]
    cfg = _config(model)
    try:
        limits = resolve_tier(tier or get_settings().tier)
    except FileNotFoundError as exc:
        _fail(exc)
    try:
        data = Path(input).read_bytes()
    except OSError as exc:
        _fail(exc)
    with RedactionSession(cfg, limits) as session:
        try:
            for custom in customs:
                session.add_custom_pattern(custom.name, custom.pattern)
            session.load_document(data, Path(input).name)
            res = session.process()
        except DocRedactError as exc:
            _fail(exc)
        if types:
            for etype in types:
                session.ledger.confirm_all_by_type(etype)
        else:
            session.ledger.confirm_all_visible()
        applied = session.ledger.confirmed_boxes()
        redacted = session.export(watermark).result()
        stamped = watermark or limits.watermark_required

    Path(output).write_bytes(redacted)
    meta_path = Path(output).with_suffix(".meta.json")
    meta_path.write_bytes(
        orjson.dumps(
            {"input": input, "output": output, "pages": [p.model_dump() for p in res.pages]},
            option=orjson.OPT_INDENT_2,
        )
    )
    errors = [e["message"] for p in res.pages for e in p.errors]
    audit = write_audit(
        input,
        output,
        applied,
        res.entities,
        {
            "use_model": cfg.use_model,
            "spacy_model": cfg.spacy_model,
            "patterns": [c.to_dict() for c in customs],
            "confirm": [t.value for t in types],
        },
        limits.to_dict(),
        errors,
        watermark=stamped,
    )
    print(f"[green]Redacted PDF:[/green] {output} ({len(applied)} boxes)")
    print(f"[green]Details:[/green] {meta_path}")
    print(f"[green]Audit:[/green] {audit}")


@app.command()
def preview(
    input: str = typer.Option(..., "--input", "-i", help="Input PDF path"),
    output: str = typer.Option(..., "--output", "-o", help="Output preview PDF path"),
    png_dir: Optional[str] = typer.Option(None, help="Also write outlined page PNGs here"),
    model: bool = typer.Option(True, "--model/--no-model", help="Enable model NER detection"),
):
    """Outline detected boxes without redacting anything."""
    cfg = _config(model)
    with RedactionSession(cfg, resolve_tier(get_settings().tier)) as session:
        try:
            session.load_document(Path(input).read_bytes(), Path(input).name)
            session.process()
        except (DocRedactError, OSError) as exc:
            _fail(exc)
        Path(output).write_bytes(session.preview())
        if png_dir:
            out_dir = Path(png_dir)
            out_dir.mkdir(parents=True, exist_ok=True)
            for n, img in enumerate(session.preview_pages(), start=1):
                img.save(out_dir / f"page-{n:03d}.png")
    print(f"[green]Preview PDF:[/green] {output}")


if __name__ == "__main__":
    app()
