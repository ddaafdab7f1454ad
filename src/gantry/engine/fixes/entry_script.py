# src/gantry/engine/fixes/entry_script.py
"""Restore a missing module entry script in index.html.

Projects exported from online editors often ship an index.html with a
``<div id="root">`` and an index.tsx next to it, but no script tag tying
them together; Vite then builds an empty page.
"""

import re

from gantry.engine.fixes.base import FixContext

_MODULE_SCRIPT = re.compile(r"<script[^>]+type=[\"']module[\"'][^>]*src=", re.IGNORECASE)
_INDEX_REFERENCE = re.compile(r"src=[\"']\.?/index\.[tj]sx?[\"']", re.IGNORECASE)
_ROOT_ELEMENT = re.compile(r"<div[^>]+id=[\"']root[\"'][^>]*>", re.IGNORECASE)

SCRIPT_TAG = '    <script type="module" src="./index.tsx"></script>\n'


class MissingHtmlEntryScriptFix:
    name = "missing-html-entry-script"
    description = (
        'Inject <script type="module" src="./index.tsx"> into index.html when an '
        "index.tsx entry exists but no module script is present."
    )

    def detect(self, ctx: FixContext) -> bool:
        html_path = ctx.working_dir / "index.html"
        if not html_path.is_file() or not (ctx.working_dir / "index.tsx").is_file():
            return False
        html = html_path.read_text(encoding="utf-8")
        if _MODULE_SCRIPT.search(html) and _INDEX_REFERENCE.search(html):
            return False
        return _ROOT_ELEMENT.search(html) is not None

    def apply(self, ctx: FixContext) -> None:
        html_path = ctx.working_dir / "index.html"
        html = html_path.read_text(encoding="utf-8")
        body_close = html.lower().rfind("</body>")
        if body_close == -1:
            updated = f"{html}\n{SCRIPT_TAG}"
        else:
            updated = html[:body_close] + SCRIPT_TAG + html[body_close:]
        html_path.write_text(updated, encoding="utf-8")
