# src/gantry/engine/fixes/relative_assets.py
"""Make built asset references relative for non-root serving.

Bundlers emit ``src="/assets/index-abc.js"`` by default. When an app is
served under a path prefix (``/apps/<slug>/``) those root-relative URLs
point at the host root instead of the app, so the page loads blank.
Runs after the build, against the output directory's index.html.
"""

import re

from gantry.engine.fixes.base import FixContext

_ABSOLUTE_ATTR = re.compile(r"(src|href)=[\"']/(assets/[^\"']*)[\"']", re.IGNORECASE)
_ABSOLUTE_CSS_URL = re.compile(r"url\(\s*[\"']?/(assets/[^\"')]*)[\"']?\s*\)", re.IGNORECASE)


class RelativeDistAssetsFix:
    name = "relative-dist-assets"
    description = "Rewrite absolute /assets/... paths in the built index.html to ./assets/... for sub-path serving."

    def __init__(self, enabled: bool = True) -> None:
        self._enabled = enabled

    def detect(self, ctx: FixContext) -> bool:
        if not self._enabled or ctx.output_dir is None:
            return False
        index_path = ctx.output_dir / "index.html"
        if not index_path.is_file():
            return False
        html = index_path.read_text(encoding="utf-8")
        return bool(_ABSOLUTE_ATTR.search(html) or _ABSOLUTE_CSS_URL.search(html))

    def apply(self, ctx: FixContext) -> None:
        if ctx.output_dir is None:
            return
        index_path = ctx.output_dir / "index.html"
        html = index_path.read_text(encoding="utf-8")
        html = _ABSOLUTE_ATTR.sub(r'\1="./\2"', html)
        html = _ABSOLUTE_CSS_URL.sub(r'url("./\1")', html)
        index_path.write_text(html, encoding="utf-8")
