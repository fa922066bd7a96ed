from typing import NamedTuple

from .errors import InvalidIdentity


class IdentityKey(NamedTuple):
    ip_address: str
    project_name: str


def identity_of(ip_address: str, project_name: str) -> IdentityKey:
    """
    Deduplication key for a visitor. Exact string match, no normalization.
    """
    if not isinstance(project_name, str) or not project_name:
        raise InvalidIdentity("Project Name is required")
    if not isinstance(ip_address, str) or not ip_address:
        raise InvalidIdentity("IP Address is required")
    return IdentityKey(ip_address, project_name)
