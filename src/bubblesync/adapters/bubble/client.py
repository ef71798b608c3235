"""HTTP record source for the Bubble data API."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import ValidationError

from bubblesync.adapters.http_resilience import ResilienceConfig, ResilientClient
from bubblesync.config.bubble import BubbleConfig, get_bubble_config
from bubblesync.domain.entities import REMOTE_TYPE_BY_KIND
from bubblesync.domain.errors import RemoteFetchError, RemoteUnauthorizedError
from bubblesync.domain.mapping import MODIFIED_DATE_KEY, FieldKind, coerce_value

from .schema import (
    BubbleBaseModel,
    BubbleErrorResponse,
    BubbleListResponse,
    BubbleRecordResponse,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from bubblesync.domain.entities import EntityKind
    from bubblesync.domain.ports.fetching import RawRecord, RecordSource

log = getLogger(__name__)


def _should_cache_payload(payload: object) -> bool:
    return isinstance(payload, dict) and "response" in payload


def _default_config() -> BubbleConfig:
    return get_bubble_config(cache_predicate=_should_cache_payload)


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


def modified_since_constraint(since: datetime) -> str:
    """Return the ``constraints`` query value selecting records modified after ``since``."""

    value = since.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return json.dumps(
        [{"key": MODIFIED_DATE_KEY, "constraint_type": "greater than", "value": value}]
    )


def _modified_at(record: RawRecord) -> datetime | None:
    try:
        value = coerce_value(record.get(MODIFIED_DATE_KEY), FieldKind.TIMESTAMP)
    except (TypeError, ValueError, OverflowError):
        return None
    return value if isinstance(value, datetime) else None


@dataclass(slots=True)
class BubbleRecordSource:
    """Reads raw records with their human-readable keys from the Bubble data API."""

    config: BubbleConfig = field(default_factory=_default_config)
    client_factory: Callable[[ResilienceConfig], ResilientClient] = field(
        default=_default_client_factory
    )

    def fetch_batch(
        self,
        kind: EntityKind,
        *,
        since: datetime | None = None,
    ) -> list[RawRecord]:
        return asyncio.run(self._fetch_batch_async(kind, since=since))

    def fetch_by_id(self, kind: EntityKind, external_id: str) -> RawRecord | None:
        return asyncio.run(self._fetch_by_id_async(kind, external_id))

    async def _fetch_batch_async(
        self,
        kind: EntityKind,
        *,
        since: datetime | None,
    ) -> list[RawRecord]:
        path = REMOTE_TYPE_BY_KIND[kind]
        records: list[RawRecord] = []
        cursor = 0
        filtered = 0

        async with self.client_factory(self.config.resilience) as client:
            while True:
                params: dict[str, str | int] = {"cursor": cursor, "limit": self.config.page_size}
                if since is not None:
                    params["constraints"] = modified_since_constraint(since)
                response = await self._get(client, path, params=params)
                payload = self._validate(BubbleListResponse, response, path=path)
                page = payload.response

                for result in page.results:
                    # The remote filter is inclusive on some app versions.
                    modified_at = _modified_at(result)
                    if since is not None and modified_at is not None and modified_at <= since:
                        filtered += 1
                        continue
                    records.append(result)

                log.debug(
                    "Fetched %s page at cursor %s: %s results, %s remaining",
                    path,
                    cursor,
                    len(page.results),
                    page.remaining,
                )
                if not page.results or page.remaining <= 0:
                    break
                cursor += len(page.results)

        if filtered:
            log.debug("Dropped %s %s records not modified after %s", filtered, path, since)
        return records

    async def _fetch_by_id_async(self, kind: EntityKind, external_id: str) -> RawRecord | None:
        path = f"{REMOTE_TYPE_BY_KIND[kind]}/{external_id}"
        async with self.client_factory(self.config.lookup_resilience) as client:
            response = await self._get(client, path, allow_missing=True)
            if response.status_code == httpx.codes.NOT_FOUND:
                return None
            payload = self._validate(BubbleRecordResponse, response, path=path)
        return payload.response

    async def _get(
        self,
        client: ResilientClient,
        path: str,
        *,
        params: dict[str, str | int] | None = None,
        allow_missing: bool = False,
    ) -> httpx.Response:
        try:
            response = await client.get(
                path,
                params=params,
                headers=self.config.auth_headers,
            )
        except httpx.HTTPError as exc:
            raise RemoteFetchError(f"Request for {path} failed: {exc}") from exc

        if response.status_code in {httpx.codes.UNAUTHORIZED, httpx.codes.FORBIDDEN}:
            log.error("Bubble rejected credentials for %s (%s)", path, response.status_code)
            raise RemoteUnauthorizedError(
                f"Bubble rejected the API key ({response.status_code}) for {path}"
            )
        if allow_missing and response.status_code == httpx.codes.NOT_FOUND:
            return response
        if response.is_error:
            raise RemoteFetchError(
                f"Bubble returned {response.status_code} for {path}: {_error_detail(response)}"
            )
        return response

    @staticmethod
    def _validate[TModel: BubbleBaseModel](
        model: type[TModel],
        response: httpx.Response,
        *,
        path: str,
    ) -> TModel:
        try:
            return model.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise RemoteFetchError(f"Unexpected Bubble payload for {path}: {exc}") from exc


def _error_detail(response: httpx.Response) -> str:
    try:
        payload: Any = response.json()
    except ValueError:
        return response.text[:200]
    try:
        detail = BubbleErrorResponse.model_validate(payload).detail
    except ValidationError:
        detail = None
    return detail or response.text[:200]


if TYPE_CHECKING:
    _source_check: RecordSource = BubbleRecordSource()
