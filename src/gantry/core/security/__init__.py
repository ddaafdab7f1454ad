# src/gantry/core/security/__init__.py
"""Security policies applied to user-controlled input."""

from gantry.core.security.sources import (
    RepositoryRef,
    parse_repository_ref,
    repository_archive_urls,
    validate_archive_url,
    validate_url_scheme,
)

__all__ = [
    "RepositoryRef",
    "parse_repository_ref",
    "repository_archive_urls",
    "validate_archive_url",
    "validate_url_scheme",
]
