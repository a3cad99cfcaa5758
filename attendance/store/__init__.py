"""Principal persistence."""

from .principal_store import Principal, PrincipalStore

__all__ = ["Principal", "PrincipalStore"]
