"""
Typed permission tokens.

Raw token strings are parsed once at the boundary into one of three
variants, and all matching works on the parsed form:

    ExactPermission("projects", "view")   <- "projects.view"
    ResourceWildcard("projects")          <- "projects.*"
    GlobalWildcard()                      <- "*"

Anything else is malformed and parses to None.
"""

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Union

GLOBAL_WILDCARD = "*"

_SEGMENT = re.compile(r"^[A-Za-z0-9_\-]+$")


@dataclass(frozen=True)
class ExactPermission:
    """A single action on a single resource."""

    resource: str
    action: str

    def grants(self, requested: "ExactPermission") -> bool:
        return self == requested

    def __str__(self) -> str:
        return f"{self.resource}.{self.action}"


@dataclass(frozen=True)
class ResourceWildcard:
    """Every action on one resource."""

    resource: str

    def grants(self, requested: ExactPermission) -> bool:
        return self.resource == requested.resource

    def __str__(self) -> str:
        return f"{self.resource}.*"


@dataclass(frozen=True)
class GlobalWildcard:
    """Every action on every resource. Reserved for platform super-actors."""

    def grants(self, requested: ExactPermission) -> bool:
        return True

    def __str__(self) -> str:
        return GLOBAL_WILDCARD


PermissionToken = Union[ExactPermission, ResourceWildcard, GlobalWildcard]


def parse_token(raw: str) -> Optional[PermissionToken]:
    """
    Parse a raw token string.

    Args:
        raw: Token such as "projects.view", "projects.*" or "*".

    Returns:
        The parsed token, or None when the string is malformed.
    """
    if not isinstance(raw, str):
        return None
    if raw == GLOBAL_WILDCARD:
        return GlobalWildcard()

    resource, sep, action = raw.partition(".")
    if not sep or not _SEGMENT.match(resource):
        return None
    if action == "*":
        return ResourceWildcard(resource)
    if not _SEGMENT.match(action):
        return None
    return ExactPermission(resource, action)


def parse_requested(raw: str) -> Optional[ExactPermission]:
    """
    Parse a token that is being asked about.

    Only exact tokens can be requested; wildcards and malformed strings
    return None so callers deny them.
    """
    token = parse_token(raw)
    return token if isinstance(token, ExactPermission) else None


def parse_tokens(raws: Iterable[str]) -> List[PermissionToken]:
    """Parse a collection of raw tokens, dropping malformed ones."""
    parsed = []
    for raw in raws:
        token = parse_token(raw)
        if token is not None:
            parsed.append(token)
    return parsed
