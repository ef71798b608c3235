from __future__ import annotations

from collections.abc import Callable  # noqa: TC003
from pathlib import Path  # noqa: TC003

import httpx
import pytest

from bubblesync.adapters.files import HttpFileDownloader, LocalFileStore
from bubblesync.adapters.http_resilience import ResilienceConfig, ResilientClient
from bubblesync.config.files import FileMigrationConfig
from bubblesync.domain.entities import EntityKind
from bubblesync.domain.ports.files import DownloadJob


def _make_client_factory(
    handler: Callable[[httpx.Request], httpx.Response],
) -> Callable[[ResilienceConfig], ResilientClient]:
    async def async_handler(request: httpx.Request) -> httpx.Response:
        return handler(request)

    def factory(resilience: ResilienceConfig) -> ResilientClient:
        client = ResilientClient(resilience)
        client._client = httpx.AsyncClient(  # noqa: SLF001  # type: ignore[reportPrivateUsage]
            transport=httpx.MockTransport(async_handler),
        )
        return client

    return factory


def _job(url: str, filename: str) -> DownloadJob:
    return DownloadJob(
        kind=EntityKind.CUSTOMER,
        external_id="C1",
        local_id=1,
        column="ic_front",
        index=None,
        original_value=url,
        source_url=url,
        subfolder="ic",
        filename=filename,
    )


def _downloader(
    root: Path,
    handler: Callable[[httpx.Request], httpx.Response],
) -> HttpFileDownloader:
    return HttpFileDownloader(
        config=FileMigrationConfig(storage_root=root, concurrency=2),
        client_factory=_make_client_factory(handler),
    )


def test_downloads_each_job_independently(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/missing.pdf":
            return httpx.Response(404)
        return httpx.Response(200, content=b"%PDF-1.7")

    downloader = _downloader(tmp_path, handler)
    jobs = [
        _job("https://cdn.example.com/front.pdf", "1_front_1000.pdf"),
        _job("https://cdn.example.com/missing.pdf", "1_missing_1000.pdf"),
    ]

    outcomes = downloader(jobs)

    stored, missing = outcomes
    assert stored.ok
    assert stored.size == len(b"%PDF-1.7")
    assert (tmp_path / "ic" / "1_front_1000.pdf").read_bytes() == b"%PDF-1.7"
    assert not missing.ok
    assert missing.error is not None
    assert "404" in missing.error
    assert not (tmp_path / "ic" / "1_missing_1000.pdf").exists()
    assert sorted(path.name for path in (tmp_path / "ic").iterdir()) == ["1_front_1000.pdf"]


def test_transport_error_becomes_failed_outcome(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    (outcome,) = _downloader(tmp_path, handler)([_job("https://cdn.example.com/a.png", "a.png")])

    assert outcome.error == "unreachable"


def test_no_jobs_skips_client(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError(f"unexpected request {request.url}")

    assert _downloader(tmp_path, handler)([]) == []


@pytest.fixture
def store(tmp_path: Path) -> LocalFileStore:
    folder = tmp_path / "ic"
    folder.mkdir()
    (folder / "1_front_1000.pdf").write_bytes(b"a")
    (folder / "2_Ahmad%20Ali_1000.pdf").write_bytes(b"b")
    (folder / "3_caf%C3%A9_1000.png").write_bytes(b"c")
    (folder / "4_raw name_1000.png").write_bytes(b"d")
    return LocalFileStore(tmp_path)


def test_locate_plain_name(store: LocalFileStore) -> None:
    expected = store.root.resolve() / "ic" / "1_front_1000.pdf"

    assert store.locate("/api/files/ic/1_front_1000.pdf") == expected


def test_locate_as_encoded_on_disk(store: LocalFileStore) -> None:
    located = store.locate("https://admin.example.com/api/files/ic/2_Ahmad%20Ali_1000.pdf")

    assert located is not None
    assert located.name == "2_Ahmad%20Ali_1000.pdf"


def test_locate_decoded_link_to_encoded_file(store: LocalFileStore) -> None:
    located = store.locate("/storage/ic/3_café_1000.png")

    assert located is not None
    assert located.name == "3_caf%C3%A9_1000.png"


def test_locate_encoded_link_to_decoded_file(store: LocalFileStore) -> None:
    located = store.locate("/api/files/ic/4_raw%20name_1000.png")

    assert located is not None
    assert located.name == "4_raw name_1000.png"


@pytest.mark.parametrize(
    "url_path",
    [
        "/api/files/ic/unknown.pdf",
        "/api/files/../secret.txt",
        "/api/files/ic/%2E%2E/%2E%2E/secret.txt",
        "/api/files/",
    ],
)
def test_locate_misses(store: LocalFileStore, url_path: str) -> None:
    (store.root.parent / "secret.txt").write_text("no")

    assert store.locate(url_path) is None
