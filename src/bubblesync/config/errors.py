"""Errors raised while reading bubblesync settings from the environment."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable


class ConfigurationError(RuntimeError):
    """A setting is present but unusable; ``setting`` names the variable when known."""

    def __init__(self, message: str, *, setting: str | None = None) -> None:
        super().__init__(message)
        self.setting = setting


class MissingConfigurationError(ConfigurationError):
    """Required settings are absent or blank.

    ``settings`` lists every missing variable in sorted order, so one run reports all
    of them. ``alternative`` names a variable that would satisfy the requirement
    instead (``BUBBLE_BASE_URL`` for ``BUBBLE_APP_NAME``).
    """

    def __init__(self, settings: Iterable[str], *, alternative: str | None = None) -> None:
        self.settings = tuple(sorted(settings))
        message = f"Missing configuration for: {', '.join(self.settings)}"
        if alternative is not None:
            message = f"{message} (or {alternative})"
        super().__init__(message, setting=self.settings[0] if self.settings else None)
        self.alternative = alternative
