"""Resource specifications and reference expressions."""

from infra_provisioner.resources.base import ResourceSpec
from infra_provisioner.resources.refs import (
    UNKNOWN,
    Reference,
    ReferenceSyntaxError,
    find_references,
    resolve_references,
)

__all__ = [
    "UNKNOWN",
    "Reference",
    "ReferenceSyntaxError",
    "ResourceSpec",
    "find_references",
    "resolve_references",
]
