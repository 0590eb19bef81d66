"""Resolve who is signed in, and with which role.

States: uninitialized -> resolving -> resolved(principal) | error.
The error state still carries the anonymous principal so the UI never
stays on a loading screen.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Coroutine, List, Optional, Set, Tuple

from tableside.config.settings import settings
from tableside.core.backend import BackendDataService, Collections, with_timeout
from tableside.core.exceptions import AuthError, TablesideError, TransientError, ValidationError
from tableside.core.roles import Role, parse_role
from tableside.models.principal import CachedProfile, Credential, Principal
from tableside.services.auth.profile_cache import MemoryProfileCache, ProfileCache

logger = logging.getLogger(__name__)


class ResolverStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    ERROR = "error"


@dataclass(frozen=True)
class ResolverSnapshot:
    """Immutable view of the resolver handed to routing and observers."""
    status: ResolverStatus
    principal: Principal = field(default_factory=Principal.anonymous)
    error: Optional[TablesideError] = None

    @property
    def is_pending(self) -> bool:
        """True while the role is not conclusively known."""
        return self.status in (ResolverStatus.UNINITIALIZED, ResolverStatus.RESOLVING)


Listener = Callable[[ResolverSnapshot], None]


class SessionResolver:
    """
    Keeps the current principal for one app instance.

    Construct one per app load and pass it to whatever needs it; the
    resolver holds no global state.
    """

    def __init__(
        self,
        backend: BackendDataService,
        cache: Optional[ProfileCache] = None,
        timeout: Optional[float] = None,
    ):
        self.backend = backend
        self.cache = cache if cache is not None else MemoryProfileCache()
        self.timeout = timeout if timeout is not None else settings.BACKEND_TIMEOUT_SECONDS

        self._snapshot = ResolverSnapshot(ResolverStatus.UNINITIALIZED)
        self._inflight: Optional[asyncio.Future] = None
        # Bumped whenever sign-in/sign-out applies a result; older resolutions are then stale
        self._generation = 0
        self._listeners: List[Listener] = []
        self._background: Set[asyncio.Future] = set()

    @property
    def snapshot(self) -> ResolverSnapshot:
        return self._snapshot

    @property
    def status(self) -> ResolverStatus:
        return self._snapshot.status

    @property
    def principal(self) -> Principal:
        return self._snapshot.principal

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call listener on every snapshot change. Returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def initialize(self) -> Principal:
        """
        Resolve the persisted credential into a principal.

        Only one resolution runs at a time: concurrent callers share the
        in-flight result. Once resolved, the current principal is returned
        without touching the backend. After an error, calling again retries.
        Never raises for backend failures.
        """
        if self._snapshot.status == ResolverStatus.RESOLVED:
            return self._snapshot.principal

        if self._inflight is None or self._inflight.done():
            self._set_snapshot(ResolverSnapshot(ResolverStatus.RESOLVING))
            self._inflight = asyncio.ensure_future(self._run_initialize(self._generation))

        await asyncio.shield(self._inflight)
        return self._snapshot.principal

    async def sign_in(self, email: str, password: str) -> Principal:
        """
        Exchange credentials and resolve the role.

        On failure the resolver state is left as it was.

        Raises:
            ValidationError: Blank email or password
            AuthError: Credentials rejected
            TransientError: Backend failure or timeout
        """
        email = (email or "").strip().lower()
        if not email or not password:
            raise ValidationError("Email and password are required", details={"field": "email" if not email else "password"})

        try:
            credential = await with_timeout(
                self.backend.authenticate(email, password), self.timeout, "sign in"
            )
            principal, write_back = await self._resolve_principal(credential)
        except AuthError:
            logger.info(f"Sign in rejected for {email}")
            raise
        except TablesideError as e:
            logger.warning(f"Sign in failed for {email}: {e.message}")
            raise

        self._store_profile(principal)
        self._generation += 1
        if write_back:
            self._spawn(self._write_back_role(principal, self._generation))
        self._set_snapshot(ResolverSnapshot(ResolverStatus.RESOLVED, principal))
        logger.info(f"Signed in as {principal.role.value}", extra={"user_id": principal.id})
        return principal

    async def sign_out(self) -> None:
        """Forget the local session and become anonymous, even if the backend call fails."""
        self._generation += 1
        self._forget_profile()
        self._set_snapshot(ResolverSnapshot(ResolverStatus.RESOLVED, Principal.anonymous()))

        try:
            await with_timeout(self.backend.sign_out(), self.timeout, "sign out")
        except TablesideError as e:
            logger.warning(f"Backend sign out failed, local session cleared anyway: {e.message}")
        else:
            logger.info("Signed out successfully")

    async def aclose(self) -> None:
        """Wait for background profile corrections to finish."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # Internal helpers

    async def _run_initialize(self, generation: int) -> None:
        credential = None
        write_back = False
        try:
            credential = await with_timeout(
                self.backend.get_current_credential(), self.timeout, "get current credential"
            )
            if credential is None:
                logger.info("No stored session found")
                principal = Principal.anonymous()
            else:
                principal, write_back = await self._resolve_principal(credential)
            snapshot = ResolverSnapshot(ResolverStatus.RESOLVED, principal)
        except TablesideError as e:
            logger.warning(f"Auth initialization failed, continuing as anonymous: {e.message}")
            snapshot = ResolverSnapshot(ResolverStatus.ERROR, Principal.anonymous(), e)
        except Exception as e:
            logger.exception("Unexpected error during auth initialization, continuing as anonymous")
            snapshot = ResolverSnapshot(
                ResolverStatus.ERROR, Principal.anonymous(), TransientError(f"Auth initialization failed: {e}")
            )

        if generation != self._generation:
            logger.debug("Discarding stale auth resolution")
            return

        if snapshot.status == ResolverStatus.RESOLVED:
            if credential is None:
                self._forget_profile()
            else:
                if self._cached_profile() != CachedProfile.from_principal(snapshot.principal):
                    self._spawn(self._correct_cache(snapshot.principal, generation))
                if write_back:
                    self._spawn(self._write_back_role(snapshot.principal, generation))
        self._set_snapshot(snapshot)

    async def _resolve_principal(self, credential: Credential) -> Tuple[Principal, bool]:
        """
        Work out the role for a credential.

        Order: credential metadata, then the cached profile of the same user,
        then the `users` collection, then customer. The flag is True when the
        role did not come from metadata and should be written back there.
        """
        raw_role = credential.user_metadata.get("role")
        metadata_role = parse_role(raw_role)
        if raw_role is not None and metadata_role is None:
            logger.warning(f"Ignoring unknown role {raw_role!r} in user metadata", extra={"user_id": credential.user_id})

        cached = self._cached_profile()
        if cached is not None and cached.user_id != credential.user_id:
            cached = None
        cached_role = parse_role(cached.role) if cached else None

        restaurant_id = credential.user_metadata.get("restaurant_id") or (cached.restaurant_id if cached else None)
        display_name = credential.display_name or (cached.full_name if cached else None)

        if metadata_role is not None:
            role = metadata_role
            if cached_role is not None and cached_role != metadata_role:
                logger.info(
                    f"Cached role {cached_role.value} disagrees with metadata role {metadata_role.value}; metadata wins",
                    extra={"user_id": credential.user_id},
                )
        elif cached_role is not None:
            role = cached_role
        else:
            profile = await self._lookup_profile(credential.user_id)
            role = parse_role(profile.get("role")) or Role.CUSTOMER
            restaurant_id = restaurant_id or profile.get("restaurant_id")
            display_name = display_name or profile.get("full_name")

        principal = Principal(
            id=credential.user_id,
            role=role,
            display_name=display_name,
            email=credential.email,
            restaurant_id=restaurant_id,
        )
        return principal, metadata_role is None

    async def _lookup_profile(self, user_id: str) -> dict:
        rows = await with_timeout(
            self.backend.query(Collections.USERS, {"id": user_id}, limit=1),
            self.timeout,
            "look up user profile",
        )
        if not rows:
            logger.info("No profile row found, defaulting to customer", extra={"user_id": user_id})
            return {}
        return rows[0]

    # Cache failures are logged and never block auth

    def _cached_profile(self) -> Optional[CachedProfile]:
        try:
            return self.cache.load()
        except OSError as e:
            logger.warning(f"Could not read cached profile: {e}")
            return None

    def _store_profile(self, principal: Principal) -> bool:
        try:
            self.cache.save(CachedProfile.from_principal(principal))
        except OSError as e:
            logger.warning(f"Could not update cached profile: {e}", extra={"user_id": principal.id})
            return False
        return True

    def _forget_profile(self) -> None:
        try:
            self.cache.clear()
        except OSError as e:
            logger.warning(f"Could not clear cached profile: {e}")

    async def _correct_cache(self, principal: Principal, generation: int) -> None:
        if generation != self._generation:
            return
        if self._store_profile(principal):
            logger.debug("Cached profile corrected", extra={"user_id": principal.id})

    async def _write_back_role(self, principal: Principal, generation: int) -> None:
        if generation != self._generation:
            return
        try:
            await with_timeout(
                self.backend.update_user_metadata({"role": principal.role.value}), self.timeout, "update user metadata"
            )
        except TablesideError as e:
            logger.warning(f"Could not store role in user metadata: {e.message}", extra={"user_id": principal.id})
        else:
            logger.info(f"Stored role {principal.role.value} in user metadata", extra={"user_id": principal.id})

    def _spawn(self, coro: Coroutine) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _set_snapshot(self, snapshot: ResolverSnapshot) -> None:
        self._snapshot = snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Session listener failed")
