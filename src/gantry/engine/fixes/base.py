# src/gantry/engine/fixes/base.py
"""The Fix contract.

A fix is a self-detecting, idempotent repair for a common authoring
mistake (missing entry script, missing env file, hard-coded API base URL,
root-relative asset paths). Fixes are stateless: everything they need is
in the FixContext passed to each call, and their side effects stay inside
the directories that context names.

Both methods are plain synchronous functions; the pipeline runs them in a
worker thread so filesystem work never blocks the event loop.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class FixContext:
    """What a fix may look at and modify during one invocation.

    Attributes:
        job_id: Deployment job the fix runs for
        working_dir: The job's current source directory
        output_dir: Build output directory; None before the build has run
    """

    job_id: str
    working_dir: Path
    output_dir: Path | None = None


@runtime_checkable
class Fix(Protocol):
    """A repository patch that knows when it applies.

    Attributes:
        name: Stable identity, recorded in the job's applied-fix set
        description: One line shown to viewers when the fix is applied
    """

    name: str
    description: str

    def detect(self, ctx: FixContext) -> bool:
        """Return True if this fix should be applied to ``ctx``."""
        ...

    def apply(self, ctx: FixContext) -> None:
        """Apply the fix. Only called after ``detect`` returned True."""
        ...
