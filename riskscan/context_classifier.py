"""Classify script source as framework and/or minified code.

The classification only adjusts the confidence of eval-style findings; it
never suppresses them.
"""

from __future__ import annotations

import re
from typing import List, Optional, Pattern, Tuple

from .models import CONFIDENCE_HIGH, CONFIDENCE_LOW, CONFIDENCE_MEDIUM, CodeContext

FRAMEWORK_SIGNATURES: List[Tuple[str, Pattern[str]]] = [
    ("Angular", re.compile(r"@Component\s*\(\s*\{|@NgModule\s*\(|\bɵɵdefineComponent\b|platformBrowserDynamic\s*\(")),
    ("React", re.compile(r"\bReact\.createElement\s*\(|\bReact\.Component\b|\b_jsxs?\s*\(|ReactDOM\.(?:render|createRoot)\s*\(")),
    ("Vue", re.compile(r"\bVue\.component\s*\(|\bnew\s+Vue\s*\(|\bcreateApp\s*\(|\bdefineComponent\s*\(|\bv-(?:if|for|bind|model)\s*=")),
    ("Svelte", re.compile(r"\bSvelteComponent(?:Dev)?\b|\bcreate_fragment\s*\(")),
    ("Next.js", re.compile(r"__NEXT_DATA__|\bnext/router\b|self\.__next_f")),
]

BUNDLER_SIGNATURES = re.compile(
    r"__webpack_require__|webpackJsonp|webpackChunk|parcelRequire|__vite__|System\.register\s*\(|define\.amd"
)
MODULE_WRAPPER_SIGNATURES = re.compile(
    r"^\s*!function\s*\(|^\s*\(function\s*\(\s*\w?\s*(?:,\s*\w\s*)*\)\s*\{|^\s*\(\(\)\s*=>\s*\{|^\s*\"use strict\";\s*var\s+\w\s*="
)
IDENTIFIER = re.compile(r"\b[A-Za-z_$][\w$]*\b")
JS_KEYWORDS = {
    "var", "let", "const", "function", "return", "if", "else", "for", "while", "new",
    "this", "true", "false", "null", "typeof", "in", "of", "do", "try", "catch",
}

LONG_LINE_THRESHOLD = 500
MIN_IDENTIFIERS = 40
SINGLE_LETTER_RATIO = 0.35

_CONFIDENCE_LADDER = [CONFIDENCE_HIGH, CONFIDENCE_MEDIUM, CONFIDENCE_LOW]


def detect_framework(source: str) -> Optional[str]:
    for name, pattern in FRAMEWORK_SIGNATURES:
        if pattern.search(source):
            return name
    return None


def _dense_single_letter_identifiers(source: str) -> bool:
    identifiers = [token for token in IDENTIFIER.findall(source) if token not in JS_KEYWORDS]
    if len(identifiers) < MIN_IDENTIFIERS:
        return False
    single = sum(1 for token in identifiers if len(token) == 1)
    return single / len(identifiers) >= SINGLE_LETTER_RATIO


def is_minified(source: str) -> bool:
    if any(len(line) > LONG_LINE_THRESHOLD for line in source.splitlines()):
        return True
    if BUNDLER_SIGNATURES.search(source):
        return True
    if MODULE_WRAPPER_SIGNATURES.search(source):
        return True
    return _dense_single_letter_identifiers(source)


def csp_blocks_eval(csp_header: Optional[str]) -> bool:
    """True when the policy restricts scripts without allowing eval or inline code."""
    if not csp_header:
        return False
    directives = {}
    for part in csp_header.split(";"):
        tokens = part.strip().split()
        if tokens:
            directives[tokens[0].lower()] = [token.lower() for token in tokens[1:]]
    sources = directives.get("script-src", directives.get("default-src"))
    if sources is None:
        return False
    return "'unsafe-eval'" not in sources and "'unsafe-inline'" not in sources


def classify(source: str, *, csp_header: Optional[str] = None, has_csp: Optional[bool] = None) -> CodeContext:
    framework = detect_framework(source)
    return CodeContext(
        is_framework=framework is not None,
        framework_name=framework,
        is_minified=is_minified(source),
        has_csp=csp_blocks_eval(csp_header) if has_csp is None else has_csp,
    )


def adjust_confidence(base: str, context: CodeContext) -> Tuple[str, str]:
    """Return the adjusted confidence and a context note for the description."""
    steps = 0
    notes: List[str] = []
    if context.is_framework:
        steps = 1
        notes.append(f"found in {context.framework_name or 'framework'} code")
    elif context.is_minified:
        steps = 1
        notes.append("found in minified code")
    if context.has_csp:
        steps += 1
        notes.append("Content-Security-Policy blocks unsafe-eval")
    index = _CONFIDENCE_LADDER.index(base) if base in _CONFIDENCE_LADDER else 0
    adjusted = _CONFIDENCE_LADDER[min(index + steps, len(_CONFIDENCE_LADDER) - 1)]
    return adjusted, "; ".join(notes)
