"""
Canonical forms for scanned / typed equipment codes.

Hand scanners and keyboards add noise: trailing CR/LF, tabs, lowercase,
mixed separators. A scanner configured for an AZERTY layout also types an
apostrophe where the label says ``4``, and some label printers use ``'`` in
place of ``-``. ``variants()`` covers those cases so the resolver can compare
against a small, fixed set of candidates.
"""
from __future__ import annotations

import re
from typing import Set

_DISALLOWED = re.compile(r"[^\w.\-]+", re.UNICODE)
_SEPARATORS = re.compile(r"[-_.]+")
_QUOTES = ("'", "’", "‘", "`")


def normalize(raw: str) -> str:
    """Uppercase, keep only letters, digits, ``-``, ``_`` and ``.``."""
    if not raw:
        return ""
    return _DISALLOWED.sub("", str(raw).upper())


def _has_quote(raw: str) -> bool:
    return any(q in raw for q in _QUOTES)


def _replace_quotes(raw: str, repl: str) -> str:
    for q in _QUOTES:
        raw = raw.replace(q, repl)
    return raw


def variants(raw: str) -> Set[str]:
    canonical = normalize(raw)
    out = {
        canonical,
        _SEPARATORS.sub("-", canonical),
        _SEPARATORS.sub("_", canonical),
        _SEPARATORS.sub(".", canonical),
        _SEPARATORS.sub("", canonical),
    }

    fallback = str(raw or "").strip().upper()
    if fallback:
        out.add(fallback)

    if raw and _has_quote(raw):
        out.add(normalize(_replace_quotes(raw, "-")))
        out.add(normalize(_replace_quotes(raw, "4")))

    # keep the canonical form even when it is empty, drop other empties
    return {v for v in out if v} | {canonical}
