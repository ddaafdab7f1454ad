# src/gantry/engine/fixes/pipeline.py
"""Runs the fix registry against a job's files.

The pipeline is invoked twice per job: before building (working
directory only) and after building (with the output directory). Fixes
run in registration order. A fix that already applied for the job is
skipped; a fix that raises is reported as a warning and stays eligible
for the next phase. A failing fix never fails the job.
"""

import asyncio
from collections.abc import Sequence

from gantry.contracts import Job, LogLevel
from gantry.core.logging import get_logger
from gantry.engine.bus import EventBus
from gantry.engine.fixes.base import Fix, FixContext

logger = get_logger(__name__)


class FixPipeline:
    """Ordered, read-only registry of fixes plus the logic to apply them."""

    def __init__(self, fixes: Sequence[Fix], bus: EventBus) -> None:
        names = [fix.name for fix in fixes]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate fix name(s): {duplicates}")
        self._fixes: tuple[Fix, ...] = tuple(fixes)
        self._bus = bus

    @property
    def fixes(self) -> tuple[Fix, ...]:
        return self._fixes

    async def run(self, job: Job, ctx: FixContext) -> list[str]:
        """Apply every eligible fix to ``ctx``.

        Returns:
            Names of fixes applied during this call
        """
        applied: list[str] = []
        for fix in self._fixes:
            if fix.name in job.applied_fixes:
                continue
            try:
                if not await asyncio.to_thread(fix.detect, ctx):
                    continue
                self._bus.append_log(job.id, f'Applying fix "{fix.name}": {fix.description}')
                await asyncio.to_thread(fix.apply, ctx)
            except Exception as e:
                # Fixes are best-effort repairs; report and move on
                self._bus.append_log(job.id, f'Fix "{fix.name}" failed: {e}', LogLevel.WARNING)
                logger.warning("fix_failed", job_id=job.id, fix=fix.name, error=str(e), error_type=type(e).__name__)
                continue
            job.applied_fixes.add(fix.name)
            applied.append(fix.name)
            self._bus.append_log(job.id, f'Fix "{fix.name}" applied successfully.', LogLevel.SUCCESS)
        return applied
