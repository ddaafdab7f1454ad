# src/gantry/core/security/sources.py
"""Source URL policy for materialization.

Project references are user-controlled, so every URL the materializer is
about to fetch passes through here first:

1. **Scheme validation**: only http/https (blocks file://, ftp://, ...)
2. **Literal IP blocking**: hosts given as private/loopback/link-local IPs
   are refused outright
3. **Host allowlist**: git references must live on a configured code host

Repository references are normalised (SSH form, trailing ``.git``) and
turned into branch archive URLs on the host's archive server.
"""

from __future__ import annotations

import ipaddress
import urllib.parse
from collections.abc import Sequence
from dataclasses import dataclass

from gantry.contracts.errors import SourcePolicyError, UnsupportedSourceError

ALLOWED_SCHEMES = {"http", "https"}

BLOCKED_IP_RANGES = [
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("169.254.0.0/16"),  # cloud metadata endpoints
    ipaddress.ip_network("100.64.0.0/10"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
    ipaddress.ip_network("::ffff:0:0/96"),  # IPv4-mapped IPv6
]


def validate_url_scheme(url: str) -> None:
    """Validate URL scheme is in allowlist (http/https only).

    Raises:
        SourcePolicyError: If scheme is not in allowlist
    """
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        raise SourcePolicyError(f"Forbidden scheme for source URL: {parsed.scheme or '(none)'}")


def _validate_literal_host(hostname: str) -> None:
    try:
        ip = ipaddress.ip_address(hostname)
    except ValueError:
        return  # a name, not a literal IP
    for blocked in BLOCKED_IP_RANGES:
        if ip in blocked:
            raise SourcePolicyError(f"Blocked source address: {hostname} in {blocked}")


def validate_archive_url(url: str) -> str:
    """Check a direct archive URL before it is downloaded.

    Returns:
        The URL, stripped of surrounding whitespace

    Raises:
        SourcePolicyError: If the scheme is not http/https, the host is
            missing, or the host is a blocked literal IP
    """
    candidate = url.strip()
    validate_url_scheme(candidate)
    hostname = urllib.parse.urlparse(candidate).hostname
    if not hostname:
        raise SourcePolicyError(f"Source URL has no host: {url!r}")
    _validate_literal_host(hostname)
    return candidate


@dataclass(frozen=True, slots=True)
class RepositoryRef:
    """A repository on an allowed code host.

    Attributes:
        host: Code host name (e.g. "github.com")
        owner: Account or organisation owning the repository
        repo: Repository name without a ``.git`` suffix
    """

    host: str
    owner: str
    repo: str

    def archive_url(self, archive_host: str, branch: str) -> str:
        return f"https://{archive_host}/{self.owner}/{self.repo}/zip/refs/heads/{branch}"


def parse_repository_ref(reference: str, allowed_hosts: Sequence[str]) -> RepositoryRef:
    """Parse a repository URL into host/owner/repo.

    Accepts ``https://host/owner/repo(.git)`` and the SSH form
    ``git@host:owner/repo(.git)``.

    Raises:
        SourcePolicyError: If the host is not allowed or the scheme is forbidden
        UnsupportedSourceError: If the reference cannot be parsed
    """
    url = reference.strip()
    if url.startswith("git@") and ":" in url:
        host_part, _, path_part = url[len("git@") :].partition(":")
        url = f"https://{host_part}/{path_part}"

    parsed = urllib.parse.urlparse(url)
    if not parsed.scheme or not parsed.hostname:
        raise UnsupportedSourceError(
            f'Unsupported repository URL: "{reference}". Expected https://<host>/<owner>/<repo>.'
        )
    validate_url_scheme(url)

    host = parsed.hostname.lower()
    if host not in {h.lower() for h in allowed_hosts}:
        raise SourcePolicyError(f'Repositories on "{host}" are not supported (allowed: {", ".join(allowed_hosts)}).')

    path = parsed.path
    if path.endswith(".git"):
        path = path[: -len(".git")]
    parts = [part for part in path.split("/") if part]
    if len(parts) < 2:
        raise UnsupportedSourceError(
            f'Could not parse repository from "{reference}". Expected https://{host}/<owner>/<repo>.'
        )
    return RepositoryRef(host=host, owner=parts[0], repo=parts[1])


def repository_archive_urls(
    reference: str,
    *,
    allowed_hosts: Sequence[str],
    archive_host: str,
    branches: Sequence[str],
) -> list[str]:
    """Candidate archive URLs for a repository, one per branch, in try order."""
    ref = parse_repository_ref(reference, allowed_hosts)
    return [ref.archive_url(archive_host, branch) for branch in branches]
