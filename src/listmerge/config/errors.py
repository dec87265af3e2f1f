"""Errors raised while reading listmerge settings from the environment."""

from __future__ import annotations


class ConfigurationError(RuntimeError):
    """Raised when an environment variable holds a value listmerge cannot use."""

    def __init__(self, variable: str, value: str, reason: str) -> None:
        self.variable = variable
        self.value = value
        super().__init__(f"{variable}={value!r}: {reason}")
