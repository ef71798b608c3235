"""Concurrent attachment downloads into the local blob directory."""

from __future__ import annotations

import asyncio
import os
import uuid
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

import httpx

from bubblesync.adapters.http_resilience import ResilienceConfig, ResilientClient, RetryPolicy
from bubblesync.config.files import FileMigrationConfig, get_file_migration_config
from bubblesync.domain.errors import FileDownloadError
from bubblesync.domain.ports.files import DownloadJob, DownloadOutcome

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from pathlib import Path

    from bubblesync.domain.ports.files import FileDownloader

log = getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


def download_resilience(config: FileMigrationConfig) -> ResilienceConfig:
    # File hosts redirect to signed CDN URLs; responses are streamed, never cached.
    return ResilienceConfig(
        name="file-download",
        timeout_seconds=config.download_timeout_seconds,
        retry=RetryPolicy.for_downloads(),
        follow_redirects=True,
    )


@dataclass(slots=True)
class HttpFileDownloader:
    """Download jobs with bounded concurrency; each file fails independently."""

    config: FileMigrationConfig = field(default_factory=get_file_migration_config)
    client_factory: Callable[[ResilienceConfig], ResilientClient] = field(
        default=_default_client_factory
    )

    def __call__(self, jobs: Sequence[DownloadJob]) -> list[DownloadOutcome]:
        if not jobs:
            return []
        return asyncio.run(self._download_all(jobs))

    async def _download_all(self, jobs: Sequence[DownloadJob]) -> list[DownloadOutcome]:
        semaphore = asyncio.Semaphore(self.config.concurrency)
        async with self.client_factory(download_resilience(self.config)) as client:

            async def bounded(job: DownloadJob) -> DownloadOutcome:
                async with semaphore:
                    return await self._download_one(client, job)

            return list(await asyncio.gather(*(bounded(job) for job in jobs)))

    async def _download_one(self, client: ResilientClient, job: DownloadJob) -> DownloadOutcome:
        target = self.target_path(job)
        try:
            async with asyncio.timeout(self.config.download_timeout_seconds):
                size = await self._stream_to(client, job.source_url, target)
        except TimeoutError:
            error = f"timed out after {self.config.download_timeout_seconds:g}s"
        except (httpx.HTTPError, FileDownloadError, OSError) as exc:
            error = str(exc) or type(exc).__name__
        else:
            log.debug("Stored %s (%s bytes)", target, size)
            return DownloadOutcome(job=job, size=size)
        log.warning("Download of %s failed: %s", job.source_url, error)
        return DownloadOutcome(job=job, error=error)

    def target_path(self, job: DownloadJob) -> Path:
        return self.config.storage_root / job.subfolder / job.filename

    async def _stream_to(self, client: ResilientClient, url: str, target: Path) -> int:
        target.parent.mkdir(parents=True, exist_ok=True)
        partial = target.with_name(f".{target.name}.{uuid.uuid4().hex}.part")
        size = 0
        try:
            async with client.stream("GET", url) as response:
                if response.is_error:
                    raise FileDownloadError(f"HTTP {response.status_code} for {url}")
                with partial.open("wb") as handle:
                    async for chunk in response.aiter_bytes(_CHUNK_SIZE):
                        handle.write(chunk)
                        size += len(chunk)
            os.replace(partial, target)
        finally:
            partial.unlink(missing_ok=True)
        return size


if TYPE_CHECKING:
    _downloader_check: FileDownloader = HttpFileDownloader()
