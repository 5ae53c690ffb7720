"""Referer allow-list and per-object label checks.

Every function here is pure: the caller passes the resolved ``AccessPolicy``
and turns the returned ``Decision`` into a response.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

from .records import PolicyLabel

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .records import ObjectRecord

LOG = logging.getLogger("file_gateway.access")


class Decision(Enum):
    ALLOW = "allow"
    BLOCK_IMAGE = "block_image"
    ALLOW_LIST_NOTICE = "allow_list_notice"


@dataclass(frozen=True)
class AccessPolicy:
    allowed_domains: frozenset[str] = field(default_factory=frozenset)
    whitelist_mode: bool = False


def parse_domains(value: str | Iterable[str] | None) -> frozenset[str]:
    if not value:
        return frozenset()
    items = value.split(",") if isinstance(value, str) else value
    return frozenset(
        item.strip().lower().lstrip(".") for item in items if item and item.strip()
    )


def _split_url(value: str):
    try:
        parts = urlsplit(value)
        hostname = parts.hostname
    except ValueError:
        return None
    if not parts.scheme or not hostname:
        return None
    return parts


def origin_of(value: str | None) -> str | None:
    """Return ``scheme://host[:port]`` for an absolute URL, else ``None``."""
    if not value:
        return None
    parts = _split_url(value)
    if parts is None:
        return None
    return f"{parts.scheme.lower()}://{parts.netloc.lower()}"


def is_same_origin(referer: str | None, request_origin: str) -> bool:
    referer_origin = origin_of(referer)
    return referer_origin is not None and referer_origin == origin_of(request_origin)


def host_matches(hostname: str, domain: str) -> bool:
    hostname = hostname.lower()
    return hostname == domain or hostname.endswith(f".{domain}")


def referer_allowed(
    referer: str | None, request_origin: str, policy: AccessPolicy
) -> bool:
    if not referer:
        return True

    parts = _split_url(referer)
    if parts is None:
        LOG.debug("rejecting unparsable referer %r", referer)
        return False
    if not policy.allowed_domains:
        return True

    domains = set(policy.allowed_domains)
    own = _split_url(request_origin)
    if own is not None:
        domains.add(own.hostname.lower())

    allowed = any(host_matches(parts.hostname, domain) for domain in domains)
    if not allowed:
        LOG.debug("referer host %s not in allow-list", parts.hostname)
    return allowed


def label_decision(
    referer: str | None,
    request_origin: str,
    record: ObjectRecord,
    policy: AccessPolicy,
) -> Decision:
    if is_same_origin(referer, request_origin):
        return Decision.ALLOW

    label = record.policy_label
    if label is PolicyLabel.WHITE:
        return Decision.ALLOW
    if label in (PolicyLabel.BLOCK, PolicyLabel.ADULT):
        return Decision.BLOCK_IMAGE
    if policy.whitelist_mode:
        return Decision.ALLOW_LIST_NOTICE
    return Decision.ALLOW


def evaluate(
    referer: str | None,
    request_origin: str,
    record: ObjectRecord,
    policy: AccessPolicy,
) -> Decision:
    """Decide whether ``record`` may be served to this referer."""
    if not referer_allowed(referer, request_origin, policy):
        return Decision.BLOCK_IMAGE
    return label_decision(referer, request_origin, record, policy)
