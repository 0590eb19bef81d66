from tableside.services.auth.profile_cache import FileProfileCache, MemoryProfileCache, ProfileCache
from tableside.services.auth.session_resolver import (
    ResolverSnapshot,
    ResolverStatus,
    SessionResolver,
)

__all__ = [
    "FileProfileCache",
    "MemoryProfileCache",
    "ProfileCache",
    "ResolverSnapshot",
    "ResolverStatus",
    "SessionResolver",
]
