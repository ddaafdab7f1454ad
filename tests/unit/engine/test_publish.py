# tests/unit/engine/test_publish.py
"""Tests for the local static publisher and published URLs."""

import asyncio
from pathlib import Path

import pytest

from gantry.contracts import PublishError, UrlStyle
from gantry.core.config import PathsSettings, PublishSettings
from gantry.engine.bus import EventBus
from gantry.engine.publish import LocalStaticPublisher, Publisher, published_url
from gantry.engine.store import InMemoryJobStore
from tests.fixtures.jobs import make_job


def make_output(root: Path) -> Path:
    output = root / "dist"
    (output / "assets").mkdir(parents=True)
    (output / "index.html").write_text("<html></html>")
    (output / "assets" / "app.js").write_text("console.log(1)")
    return output


@pytest.fixture
def publisher(tmp_path: Path, bus: EventBus) -> LocalStaticPublisher:
    return LocalStaticPublisher(PathsSettings(static_root=tmp_path / "apps"), PublishSettings(), bus)


class TestPublishedUrl:
    """Tests for published_url()."""

    def test_path_style(self) -> None:
        assert published_url(PublishSettings(), "demo-app") == "/apps/demo-app/"

    def test_path_prefix_trailing_slash(self) -> None:
        assert published_url(PublishSettings(path_prefix="/sites/"), "demo") == "/sites/demo/"

    def test_subdomain_style(self) -> None:
        settings = PublishSettings(url_style=UrlStyle.SUBDOMAIN, apps_root_domain="example.app")
        assert published_url(settings, "demo") == "https://demo.example.app/"


class TestLocalStaticPublisher:
    """Tests for LocalStaticPublisher.publish()."""

    def test_satisfies_protocol(self, publisher: LocalStaticPublisher) -> None:
        assert isinstance(publisher, Publisher)

    @pytest.mark.asyncio
    async def test_copies_output(self, store: InMemoryJobStore, publisher: LocalStaticPublisher, tmp_path: Path) -> None:
        job = make_job(store)
        output = make_output(tmp_path / "work")

        url = await publisher.publish(job.id, "demo", output)

        destination = tmp_path / "apps" / "demo"
        assert url == "/apps/demo/"
        assert (destination / "index.html").read_text() == "<html></html>"
        assert (destination / "assets" / "app.js").is_file()
        assert job.logs[-1].message == f"Copying build output to local static dir: {destination}"

    @pytest.mark.asyncio
    async def test_replaces_previous_copy(
        self, store: InMemoryJobStore, publisher: LocalStaticPublisher, tmp_path: Path
    ) -> None:
        job = make_job(store)
        stale = tmp_path / "apps" / "demo"
        stale.mkdir(parents=True)
        (stale / "old.html").write_text("old")

        await publisher.publish(job.id, "demo", make_output(tmp_path / "work"))

        assert not (stale / "old.html").exists()
        assert (stale / "index.html").exists()

    @pytest.mark.asyncio
    async def test_secrets_and_dependencies_excluded(
        self, store: InMemoryJobStore, publisher: LocalStaticPublisher, tmp_path: Path
    ) -> None:
        job = make_job(store)
        output = make_output(tmp_path / "work")
        (output / ".env").write_text("GEMINI_API_KEY=secret")
        (output / ".env.local").write_text("X=1")
        (output / "node_modules" / "left-pad").mkdir(parents=True)
        (output / ".git").mkdir()

        await publisher.publish(job.id, "demo", output)

        published = sorted(p.name for p in (tmp_path / "apps" / "demo").iterdir())
        assert published == ["assets", "index.html"]

    @pytest.mark.asyncio
    async def test_missing_output_raises_publish_error(
        self, store: InMemoryJobStore, publisher: LocalStaticPublisher, tmp_path: Path
    ) -> None:
        job = make_job(store)

        with pytest.raises(PublishError, match="Failed to copy build output"):
            await publisher.publish(job.id, "demo", tmp_path / "does-not-exist")

    @pytest.mark.asyncio
    async def test_concurrent_publishes_of_one_slug(
        self, store: InMemoryJobStore, publisher: LocalStaticPublisher, tmp_path: Path
    ) -> None:
        outputs = []
        for index in range(4):
            output = tmp_path / f"work-{index}" / "dist"
            output.mkdir(parents=True)
            for page in range(200):
                (output / f"page-{page}.html").write_text(f"build {index}")
            outputs.append(output)
        jobs = [make_job(store, f"job-{index}") for index in range(4)]

        urls = await asyncio.gather(
            *(publisher.publish(job.id, "same", output) for job, output in zip(jobs, outputs, strict=True))
        )

        assert urls == ["/apps/same/"] * 4
        published = tmp_path / "apps" / "same"
        contents = {path.read_text() for path in published.iterdir()}
        assert len(contents) == 1
        assert len(list(published.iterdir())) == 200
        assert sorted(path.name for path in (tmp_path / "apps").iterdir()) == ["same"]

    @pytest.mark.asyncio
    async def test_failed_copy_keeps_previous_copy(
        self, store: InMemoryJobStore, publisher: LocalStaticPublisher, tmp_path: Path
    ) -> None:
        job = make_job(store)
        await publisher.publish(job.id, "demo", make_output(tmp_path / "work"))

        with pytest.raises(PublishError):
            await publisher.publish(job.id, "demo", tmp_path / "does-not-exist")

        assert (tmp_path / "apps" / "demo" / "index.html").read_text() == "<html></html>"
        assert sorted(path.name for path in (tmp_path / "apps").iterdir()) == ["demo"]
