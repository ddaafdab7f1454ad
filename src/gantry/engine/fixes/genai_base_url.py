# src/gantry/engine/fixes/genai_base_url.py
"""Retarget Google GenAI clients to the platform proxy.

Browser apps built with the Google GenAI SDKs call Google's endpoints
directly with a key baked into the bundle. Rewriting the client's base
URL to the platform proxy lets the proxy attach the real credentials.

Coverage is rule-based pattern matching only:
- direct endpoint URLs (generativelanguage.googleapis.com and friends)
- ``baseUrl:`` / ``apiEndpoint:`` string properties
- ``new GoogleGenerativeAI(...)`` / ``new GoogleGenAI(...)`` constructors
- ``new GoogleAI(...)`` / ``new GoogleAIClient(...)`` constructors
"""

from __future__ import annotations

import json
import os
import re
from pathlib import Path

from gantry.engine.fixes.base import FixContext

SKIP_DIRS = frozenset({"node_modules", "dist", "build", ".next", ".output", ".vercel", ".git", ".cache"})
SOURCE_SUFFIXES = frozenset({".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs"})
GENAI_PACKAGES = ("@google/generative-ai", "@google/genai")
GOOGLE_ENDPOINT_PREFIXES = (
    "https://generativelanguage.googleapis.com",
    "https://aistudio.googleapis.com",
    "https://aistudio.google.com",
    "https://ai.google.dev",
)

_CLIENT_MARKERS = re.compile(
    r"@google/gen(?:erative-ai|ai)\b|\bGoogleGenerativeAI\b|\bGoogleAI(?:Client)?\b|generativelanguage\.googleapis\.com"
)
_BASE_PROPERTY = re.compile(r"baseUrl\s*:\s*(['\"`])[^'\"`]*\1")
_ENDPOINT_PROPERTY = re.compile(r"apiEndpoint\s*:\s*(['\"`])[^'\"`]*\1")
_ANY_URL_PROPERTY = re.compile(r"(baseUrl|apiEndpoint)\s*:\s*(['\"`])[^'\"`]*\2")
_HTTP_OPTIONS = re.compile(r"httpOptions\s*:\s*{([\s\S]*?)}")


def looks_like_genai_client(content: str) -> bool:
    return _CLIENT_MARKERS.search(content) is not None


def collect_genai_files(root: Path) -> list[Path]:
    """Source files under ``root`` that reference a Google GenAI client."""
    found: list[Path] = []
    for current, dirs, files in os.walk(root):
        dirs[:] = sorted(d for d in dirs if d not in SKIP_DIRS)
        for file_name in sorted(files):
            path = Path(current) / file_name
            if path.suffix.lower() not in SOURCE_SUFFIXES:
                continue
            try:
                content = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                continue
            if looks_like_genai_client(content):
                found.append(path)
    return found


def has_genai_dependency(package_json: Path) -> bool:
    if not package_json.is_file():
        return False
    try:
        manifest = json.loads(package_json.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError):
        return False
    if not isinstance(manifest, dict):
        return False
    declared: set[str] = set()
    for section in ("dependencies", "devDependencies"):
        deps = manifest.get(section)
        if isinstance(deps, dict):
            declared.update(deps)
    return any(name in declared for name in GENAI_PACKAGES)


def _insert_before_close(source: str, addition: str) -> str:
    close = source.rfind("}")
    if close == -1:
        return source
    head = source[:close].rstrip()
    separator = "" if head.endswith(("{", ",")) else ","
    return f"{head}{separator} {addition} {source[close:]}"


def _ensure_base_and_endpoint(object_source: str, target: str) -> str:
    has_base = _BASE_PROPERTY.search(object_source) is not None
    has_endpoint = _ENDPOINT_PROPERTY.search(object_source) is not None
    updated = _BASE_PROPERTY.sub(lambda _: f"baseUrl: '{target}'", object_source, count=1)
    updated = _ENDPOINT_PROPERTY.sub(lambda _: f"apiEndpoint: '{target}'", updated, count=1)
    missing = []
    if not has_base:
        missing.append(f"baseUrl: '{target}'")
    if not has_endpoint:
        missing.append(f"apiEndpoint: '{target}'")
    if not missing:
        return updated
    return _insert_before_close(updated, ", ".join(missing))


def _http_options_literal(target: str) -> str:
    return f"httpOptions: {{ baseUrl: '{target}', apiEndpoint: '{target}' }}"


def _upsert_http_options(object_source: str, target: str) -> str:
    if _HTTP_OPTIONS.search(object_source):
        return _HTTP_OPTIONS.sub(
            lambda m: f"httpOptions: {_ensure_base_and_endpoint('{' + m.group(1) + '}', target)}",
            object_source,
            count=1,
        )
    return _insert_before_close(object_source, _http_options_literal(target))


def _rewrite_constructors(source: str, class_pattern: str, target: str, *, top_level: bool) -> str:
    with_options = re.compile(rf"new\s+({class_pattern})\s*\(\s*({{[\s\S]*?}})\s*\)")
    with_key = re.compile(rf"new\s+({class_pattern})\s*\(\s*([^)]+?)\s*\)")

    def rewrite_options(match: re.Match[str]) -> str:
        options = match.group(2)
        if top_level:
            options = _ensure_base_and_endpoint(options, target)
        return match.group(0).replace(match.group(2), _upsert_http_options(options, target))

    def wrap_key(match: re.Match[str]) -> str:
        arg = match.group(2).strip()
        if "{" in arg or not arg:
            return match.group(0)
        return f"new {match.group(1)}({{ apiKey: {arg}, {_http_options_literal(target)} }})"

    updated = with_options.sub(rewrite_options, source)
    return with_key.sub(wrap_key, updated)


def rewrite_genai_source(content: str, target: str) -> str:
    """Apply every rewrite rule to one source file's content."""
    updated = content
    for endpoint in GOOGLE_ENDPOINT_PREFIXES:
        updated = updated.replace(endpoint, target)
    updated = _ANY_URL_PROPERTY.sub(lambda m: f"{m.group(1)}: '{target}'", updated)
    updated = _rewrite_constructors(updated, "GoogleGenerativeAI|GoogleGenAI", target, top_level=False)
    return _rewrite_constructors(updated, "GoogleAIClient|GoogleAI", target, top_level=True)


class GenAIBaseUrlFix:
    name = "rewrite-genai-base-url"
    description = "Retarget Google GenAI (AI Studio) clients to the platform proxy base URL."

    def __init__(self, target_base_url: str) -> None:
        self._target = target_base_url.rstrip("/")

    def detect(self, ctx: FixContext) -> bool:
        if has_genai_dependency(ctx.working_dir / "package.json"):
            return True
        return bool(collect_genai_files(ctx.working_dir))

    def apply(self, ctx: FixContext) -> None:
        for path in collect_genai_files(ctx.working_dir):
            original = path.read_text(encoding="utf-8")
            rewritten = rewrite_genai_source(original, self._target)
            if rewritten != original:
                path.write_text(rewritten, encoding="utf-8")
