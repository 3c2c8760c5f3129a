"""Settings resolution.

Each setting is resolved in order: explicit argument, environment variable,
then default. Table names must satisfy DynamoDB naming rules:
- Letters, digits, underscore, hyphen and period only
- Between 3 and 255 characters
"""

import os
import re

from .exceptions import ValidationError
from .schema import DEFAULT_TABLE_NAME

TABLE_ENV_VAR = "TRADE_STORE_TABLE"
"""Environment variable for overriding the default table name."""

REGION_ENV_VAR = "TRADE_STORE_REGION"
"""Environment variable for the AWS region (boto defaults apply when unset)."""

ENDPOINT_URL_ENV_VAR = "TRADE_STORE_ENDPOINT_URL"
"""Environment variable for a custom endpoint (e.g. LocalStack)."""

MIN_TABLE_NAME_LENGTH = 3
MAX_TABLE_NAME_LENGTH = 255
TABLE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


def validate_table_name(name: str) -> None:
    """
    Validate a DynamoDB table name.

    Raises:
        ValidationError: If the name is too short, too long or contains
            invalid characters
    """
    if not name:
        raise ValidationError("table_name", name, "Table name cannot be empty")
    if len(name) < MIN_TABLE_NAME_LENGTH:
        raise ValidationError(
            "table_name",
            name,
            f"Must be at least {MIN_TABLE_NAME_LENGTH} characters",
        )
    if len(name) > MAX_TABLE_NAME_LENGTH:
        raise ValidationError(
            "table_name",
            name,
            f"Exceeds maximum length of {MAX_TABLE_NAME_LENGTH} characters",
        )
    if not TABLE_NAME_PATTERN.match(name):
        raise ValidationError(
            "table_name",
            name,
            "Only letters, digits, underscores, hyphens and periods are allowed",
        )


def resolve_table_name(table_name: str | None = None) -> str:
    """Resolve and validate the table name."""
    name = table_name or os.environ.get(TABLE_ENV_VAR) or DEFAULT_TABLE_NAME
    validate_table_name(name)
    return name


def resolve_region(region: str | None = None) -> str | None:
    """Resolve the AWS region (None defers to boto's own lookup)."""
    return region or os.environ.get(REGION_ENV_VAR) or None


def resolve_endpoint_url(endpoint_url: str | None = None) -> str | None:
    """Resolve a custom DynamoDB endpoint URL."""
    return endpoint_url or os.environ.get(ENDPOINT_URL_ENV_VAR) or None
