"""Exception hierarchy for blueprint.

Every error carries a stable ``code`` so the CLI (and anything scripting
against it) can tell failure kinds apart without string matching.
"""
from __future__ import annotations


class BlueprintError(Exception):
    """Base class for all blueprint errors."""

    code: str = "BLUEPRINT_ERROR"

    def __init__(self, message: str, *, cause: Exception | None = None) -> None:
        self.message = message
        if cause is not None:
            self.__cause__ = cause
        super().__init__(message)


class ValidationError(BlueprintError, ValueError):
    """Invalid input: malformed selection pattern, missing project directory."""

    code = "VALIDATION_ERROR"


class ConfigurationError(BlueprintError):
    """Missing or unusable configuration (unknown warehouse type, bad YAML)."""

    code = "CONFIGURATION_ERROR"


class WarehouseConnectionError(BlueprintError):
    """The warehouse could not be reached at all."""

    code = "WAREHOUSE_CONNECTION_ERROR"


class WarehouseQueryError(BlueprintError):
    """A warehouse query failed."""

    code = "WAREHOUSE_QUERY_ERROR"


class ExternalGenerationError(BlueprintError):
    """The generative-text call failed or returned nothing usable."""

    code = "LLM_API_ERROR"


class ContextBuildError(BlueprintError):
    """The agent-context directory is in the wrong state for the operation."""

    code = "CONTEXT_BUILD_ERROR"


class DbtProjectError(BlueprintError):
    """The dbt project is missing files or a dbt command failed."""

    code = "DBT_PROJECT_ERROR"


__all__ = [
    "BlueprintError",
    "ConfigurationError",
    "ContextBuildError",
    "DbtProjectError",
    "ExternalGenerationError",
    "ValidationError",
    "WarehouseConnectionError",
    "WarehouseQueryError",
]
