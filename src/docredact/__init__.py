"""DocRedact

PII detection and visual redaction for PDF documents. Entities found by a
statistical model and by regular expressions are merged, mapped onto page
rectangles, reviewed through a confirmation ledger and burned into a
sanitised copy of the document. See ``docredact.pipeline`` for the
composable APIs and ``docredact.cli`` for the command-line entrypoint.
"""

__all__ = [
    "types",
    "errors",
    "regex_detect",
    "model_detect",
    "merge",
    "align",
    "layout",
    "pdfdoc",
    "ledger",
    "redact",
    "tier",
    "audit",
    "pipeline",
    "logging",
    "settings",
]

__version__ = "0.1.0"
