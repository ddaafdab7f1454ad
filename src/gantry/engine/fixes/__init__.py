"""Repository fixes applied before and after building.

Registry order is part of the contract: fixes run in the order returned
by default_fixes(), which keeps logs readable and runs deterministic.
"""

from gantry.core.config import FixSettings
from gantry.engine.fixes.base import Fix, FixContext
from gantry.engine.fixes.entry_script import MissingHtmlEntryScriptFix
from gantry.engine.fixes.env_placeholder import EnvPlaceholderFix
from gantry.engine.fixes.genai_base_url import GenAIBaseUrlFix
from gantry.engine.fixes.pipeline import FixPipeline
from gantry.engine.fixes.relative_assets import RelativeDistAssetsFix


def default_fixes(settings: FixSettings) -> tuple[Fix, ...]:
    """Built-in fixes in priority order."""
    return (
        MissingHtmlEntryScriptFix(),
        EnvPlaceholderFix(settings.placeholder_env_key),
        GenAIBaseUrlFix(settings.genai_proxy_base_url),
        RelativeDistAssetsFix(enabled=settings.relative_assets),
    )


__all__ = [
    "EnvPlaceholderFix",
    "Fix",
    "FixContext",
    "FixPipeline",
    "GenAIBaseUrlFix",
    "MissingHtmlEntryScriptFix",
    "RelativeDistAssetsFix",
    "default_fixes",
]
