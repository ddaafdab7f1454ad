# tests/unit/engine/test_executor.py
"""Tests for build planning and BuildExecutor."""

import json
import sys
from pathlib import Path

import pytest

from gantry.contracts import BuildError, BuildOutputNotFoundError, LogLevel, PackageManager
from gantry.core.config import BuildSettings
from gantry.engine.bus import EventBus
from gantry.engine.executor import BuildExecutor, detect_package_manager, find_output_dir, plan_build
from gantry.engine.store import InMemoryJobStore
from tests.fixtures.jobs import make_job


def python_command(code: str) -> list[str]:
    return [sys.executable, "-c", code]


def write_manifest(directory: Path, **fields: object) -> None:
    (directory / "package.json").write_text(json.dumps({"name": "demo", **fields}))


class TestDetectPackageManager:
    """Tests for detect_package_manager()."""

    def test_package_manager_field_wins(self, tmp_path: Path) -> None:
        (tmp_path / "yarn.lock").touch()
        manager, reason = detect_package_manager(tmp_path, {"packageManager": "pnpm@9.1.0"})
        assert manager is PackageManager.PNPM
        assert reason == "packageManager field: pnpm@9.1.0"

    @pytest.mark.parametrize(
        ("lockfile", "expected"),
        [
            ("pnpm-lock.yaml", PackageManager.PNPM),
            ("yarn.lock", PackageManager.YARN),
            ("bun.lockb", PackageManager.BUN),
            ("package-lock.json", PackageManager.NPM),
        ],
    )
    def test_lockfile(self, tmp_path: Path, lockfile: str, expected: PackageManager) -> None:
        (tmp_path / lockfile).touch()
        manager, reason = detect_package_manager(tmp_path)
        assert manager is expected
        assert reason == f"lockfile: {lockfile}"

    def test_unknown_manager_field_falls_back_to_lockfile(self, tmp_path: Path) -> None:
        (tmp_path / "yarn.lock").touch()
        manager, _ = detect_package_manager(tmp_path, {"packageManager": "deno@1.0"})
        assert manager is PackageManager.YARN

    def test_default_is_npm(self, tmp_path: Path) -> None:
        manager, reason = detect_package_manager(tmp_path, {})
        assert manager is PackageManager.NPM
        assert reason.startswith("default")


class TestPlanBuild:
    """Tests for plan_build()."""

    def test_inline_is_static(self, tmp_path: Path) -> None:
        write_manifest(tmp_path)
        plan = plan_build(tmp_path, BuildSettings(), inline=True)
        assert plan.static
        assert plan.install == ()

    def test_no_manifest_is_static(self, tmp_path: Path) -> None:
        (tmp_path / "index.html").write_text("<html></html>")
        plan = plan_build(tmp_path, BuildSettings())
        assert plan.static
        assert plan.reason == "no package.json found"

    def test_npm_plan(self, tmp_path: Path) -> None:
        write_manifest(tmp_path, scripts={"build": "vite build"})
        plan = plan_build(tmp_path, BuildSettings())
        assert not plan.static
        assert plan.package_manager is PackageManager.NPM
        assert plan.install == ("npm", "install")
        assert plan.build == ("npm", "run", "build")
        assert plan.env == {"npm_config_production": "false"}

    def test_yarn_plan_has_no_install_env(self, tmp_path: Path) -> None:
        write_manifest(tmp_path)
        (tmp_path / "yarn.lock").touch()
        plan = plan_build(tmp_path, BuildSettings())
        assert plan.install == ("yarn", "install")
        assert plan.build == ("yarn", "build")
        assert plan.env == {}

    def test_pnpm_plan(self, tmp_path: Path) -> None:
        write_manifest(tmp_path, packageManager="pnpm@8.15.0")
        plan = plan_build(tmp_path, BuildSettings(install_env={"CI": "1"}))
        assert plan.build == ("pnpm", "run", "build")
        assert plan.env == {"CI": "1"}

    def test_unreadable_manifest_still_builds(self, tmp_path: Path) -> None:
        (tmp_path / "package.json").write_text("{not json")
        plan = plan_build(tmp_path, BuildSettings())
        assert not plan.static
        assert plan.package_manager is PackageManager.NPM


class TestFindOutputDir:
    """Tests for find_output_dir()."""

    def test_first_candidate_in_order(self, tmp_path: Path) -> None:
        (tmp_path / "build").mkdir()
        (tmp_path / "out").mkdir()
        assert find_output_dir(tmp_path, ("dist", "build", "out")) == tmp_path / "build"

    def test_file_is_not_an_output_dir(self, tmp_path: Path) -> None:
        (tmp_path / "dist").write_text("not a directory")
        (tmp_path / "out").mkdir()
        assert find_output_dir(tmp_path, ("dist", "build", "out")) == tmp_path / "out"

    def test_missing_output(self, tmp_path: Path) -> None:
        with pytest.raises(BuildOutputNotFoundError, match=r"tried dist/, build/, out/"):
            find_output_dir(tmp_path, ("dist", "build", "out"))


class TestBuildExecutor:
    """Tests for BuildExecutor.run()."""

    @pytest.mark.asyncio
    async def test_stdout_info_and_stderr_warning(self, store: InMemoryJobStore, bus: EventBus, tmp_path: Path) -> None:
        job = make_job(store)
        code = "import sys; print('compiled 3 modules'); print('deprecated option', file=sys.stderr)"

        await BuildExecutor(bus).run(job.id, python_command(code), tmp_path)

        entries = {(entry.level, entry.message) for entry in job.logs}
        assert (LogLevel.INFO, "compiled 3 modules") in entries
        assert (LogLevel.WARNING, "deprecated option") in entries
        assert job.logs[0].message.startswith("$ ")
        assert not any(entry.level is LogLevel.ERROR for entry in job.logs)

    @pytest.mark.asyncio
    async def test_ansi_sequences_stripped(self, store: InMemoryJobStore, bus: EventBus, tmp_path: Path) -> None:
        job = make_job(store)
        code = r"print('\x1b[32mready\x1b[0m in \x1b[1m120ms\x1b[22m')"

        await BuildExecutor(bus).run(job.id, python_command(code), tmp_path)

        assert job.logs[-1].message == "ready in 120ms"

    @pytest.mark.asyncio
    async def test_blank_lines_skipped_and_partial_line_kept(
        self, store: InMemoryJobStore, bus: EventBus, tmp_path: Path
    ) -> None:
        job = make_job(store)
        code = "import sys; sys.stdout.write('first\\n\\n   \\nlast without newline')"

        await BuildExecutor(bus).run(job.id, python_command(code), tmp_path)

        assert [entry.message for entry in job.logs[1:]] == ["first", "last without newline"]

    @pytest.mark.asyncio
    async def test_env_overrides_merged(self, store: InMemoryJobStore, bus: EventBus, tmp_path: Path) -> None:
        job = make_job(store)
        code = "import os; print(os.environ['GANTRY_PROBE'], 'PATH' in os.environ)"

        await BuildExecutor(bus).run(job.id, python_command(code), tmp_path, env={"GANTRY_PROBE": "visible"})

        assert job.logs[-1].message == "visible True"

    @pytest.mark.asyncio
    async def test_runs_in_working_directory(self, store: InMemoryJobStore, bus: EventBus, tmp_path: Path) -> None:
        job = make_job(store)
        (tmp_path / "marker.txt").write_text("here")

        await BuildExecutor(bus).run(job.id, python_command("print(open('marker.txt').read())"), tmp_path)

        assert job.logs[-1].message == "here"

    @pytest.mark.asyncio
    async def test_non_zero_exit_is_fatal(self, store: InMemoryJobStore, bus: EventBus, tmp_path: Path) -> None:
        job = make_job(store)

        with pytest.raises(BuildError) as exc_info:
            await BuildExecutor(bus).run(job.id, python_command("import sys; sys.exit(3)"), tmp_path)

        assert exc_info.value.exit_code == 3
        assert job.logs[-1].level is LogLevel.ERROR
        assert "exited with code 3" in job.logs[-1].message

    @pytest.mark.asyncio
    async def test_missing_program(self, store: InMemoryJobStore, bus: EventBus, tmp_path: Path) -> None:
        job = make_job(store)

        with pytest.raises(BuildError) as exc_info:
            await BuildExecutor(bus).run(job.id, ["gantry-no-such-program-xyz", "build"], tmp_path)

        assert exc_info.value.exit_code is None
        assert exc_info.value.command == "gantry-no-such-program-xyz build"
        assert job.logs[-1].level is LogLevel.ERROR
        assert job.logs[-1].message.startswith('Failed to start "gantry-no-such-program-xyz build"')

    @pytest.mark.asyncio
    async def test_arguments_are_not_shell_interpreted(
        self, store: InMemoryJobStore, bus: EventBus, tmp_path: Path
    ) -> None:
        job = make_job(store)
        code = "import sys; print(sys.argv[1])"

        await BuildExecutor(bus).run(job.id, [*python_command(code), "$HOME && echo injected"], tmp_path)

        assert job.logs[-1].message == "$HOME && echo injected"

    @pytest.mark.asyncio
    async def test_empty_command_rejected(self, bus: EventBus, tmp_path: Path) -> None:
        with pytest.raises(ValueError, match="must not be empty"):
            await BuildExecutor(bus).run("job-1", [], tmp_path)
