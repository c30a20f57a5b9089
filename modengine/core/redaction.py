# modengine/core/redaction.py
from __future__ import annotations

import re

__all__ = ["redactText"]



# Precompiled sensitive-data regex patterns
_SENSITIVE_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    # Bearer or Authorization headers (GitHub API token travels this way)
    (re.compile(r"(?iu)(Bearer\s+)[A-Za-z0-9._\-]+"), r"\1***"),
    (re.compile(r"(?iu)(Authorization\s*[:=]\s*)[A-Za-z0-9._\-]+"), r"\1***"),
    (re.compile(r"(?iu)(token\s+)[A-Za-z0-9._\-]{16,}"), r"\1***"),

    # Raw GitHub token formats (classic and fine-grained)
    (re.compile(r"\b(gh[pousr]_)[A-Za-z0-9]{20,}\b"), r"\1***"),
    (re.compile(r"\b(github_pat_)[A-Za-z0-9_]{20,}\b"), r"\1***"),

    # API key or token-style key/value pairs in JSON
    (re.compile(r'(?iu)("api[_\-]?key"\s*:\s*")[^"]+(")'), r"\1***\2"),
    (re.compile(r'(?iu)("(?:api)?token"\s*:\s*")[^"]+(")'), r"\1***\2"),

    # Query parameter forms like access_token=abcdef
    (re.compile(r"(?iu)((?:access_)?token=)[^&\s\"]+"), r"\1***"),
]



def redactText(text: str) -> str:
    """Return sanitized text with sensitive substrings replaced by ***."""
    if not text:
        return text
    out = text
    for pattern, repl in _SENSITIVE_PATTERNS:
        try:
            out = pattern.sub(repl, out)
        except re.error:
            continue # Never crash logging on regex errors
    return out
