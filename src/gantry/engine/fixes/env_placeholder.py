# src/gantry/engine/fixes/env_placeholder.py
"""Ensure a placeholder API key exists in .env.

Apps generated by AI studios read an API key at build time and abort the
build when it is missing. The real key is never needed at build time
because requests are proxied, so a dummy value is enough.
"""

import re

from gantry.engine.fixes.base import FixContext

PLACEHOLDER_HEADER = "# Placeholder injected by gantry for builds\n"


class EnvPlaceholderFix:
    name = "add-env-placeholder"

    def __init__(self, key: str = "GEMINI_API_KEY") -> None:
        self._key = key
        self._pattern = re.compile(rf"^{re.escape(key)}\s*=", re.MULTILINE)
        self.description = f"Ensure .env exists with a placeholder {key}=xxx for builds."

    def detect(self, ctx: FixContext) -> bool:
        env_path = ctx.working_dir / ".env"
        if not env_path.is_file():
            return True
        return self._pattern.search(env_path.read_text(encoding="utf-8")) is None

    def apply(self, ctx: FixContext) -> None:
        env_path = ctx.working_dir / ".env"
        line = f"{self._key}=xxx\n"
        if not env_path.is_file():
            env_path.write_text(PLACEHOLDER_HEADER + line, encoding="utf-8")
            return
        existing = env_path.read_text(encoding="utf-8").rstrip()
        prefix = f"{existing}\n" if existing else ""
        env_path.write_text(prefix + PLACEHOLDER_HEADER + line, encoding="utf-8")
