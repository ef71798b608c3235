"""Remote record source (Bubble data API) configuration values."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from .env import env_float, env_int, optional_env_var, require_env_vars
from .errors import MissingConfigurationError
from .http_resilience import (
    DEFAULT_RETRY_TOTAL,
    CacheConfig,
    RateLimit,
    ResilienceConfig,
    RetryPolicy,
    ShouldCacheHook,
)

BUBBLE_URL_TEMPLATE: Final[str] = "https://{app}.bubbleapps.io/api/1.1/obj"
BUBBLE_TIMEOUT_SECONDS: Final[float] = 30.0
BUBBLE_PAGE_SIZE: Final[int] = 100
BUBBLE_MAX_CALLS_PER_SECOND: Final[float] = 8.0
# Related records are looked up by id once per run; a short TTL avoids refetching
# the same agent or customer for every invoice that references it.
BUBBLE_LOOKUP_CACHE_TTL_SECONDS: Final[float] = 300.0


@dataclass(frozen=True, slots=True)
class BubbleConfig:
    """Holds the data API location, credentials and client tuning."""

    base_url: str
    api_key: str
    resilience: ResilienceConfig
    lookup_resilience: ResilienceConfig
    page_size: int = BUBBLE_PAGE_SIZE

    @property
    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}


def _resolve_base_url() -> str:
    explicit = optional_env_var("BUBBLE_BASE_URL")
    if explicit is not None:
        return explicit.rstrip("/")
    app_name = optional_env_var("BUBBLE_APP_NAME")
    if app_name is None:
        raise MissingConfigurationError(["BUBBLE_APP_NAME"], alternative="BUBBLE_BASE_URL")
    return BUBBLE_URL_TEMPLATE.format(app=app_name)


def get_bubble_config(
    *,
    cache_predicate: ShouldCacheHook | None = None,
) -> BubbleConfig:
    values = require_env_vars(("BUBBLE_API_KEY",))
    base_url = _resolve_base_url()
    ratelimit = RateLimit.per_second(
        env_float("BUBBLE_MAX_CALLS_PER_SECOND", BUBBLE_MAX_CALLS_PER_SECOND)
    )
    retry = RetryPolicy(total=env_int("BUBBLE_MAX_RETRIES", DEFAULT_RETRY_TOTAL))
    resilience = ResilienceConfig(
        name="bubble",
        base_url=base_url,
        timeout_seconds=BUBBLE_TIMEOUT_SECONDS,
        retry=retry,
        ratelimit=ratelimit,
    )
    lookup_resilience = ResilienceConfig(
        name="bubble-lookup",
        base_url=base_url,
        timeout_seconds=BUBBLE_TIMEOUT_SECONDS,
        retry=retry,
        ratelimit=ratelimit,
        cache=CacheConfig(
            backend="sqlite",
            default_ttl_seconds=BUBBLE_LOOKUP_CACHE_TTL_SECONDS,
            should_cache=cache_predicate,
        ),
    )
    return BubbleConfig(
        base_url=base_url,
        api_key=values["BUBBLE_API_KEY"],
        resilience=resilience,
        lookup_resilience=lookup_resilience,
    )
