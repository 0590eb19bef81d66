"""Route access decisions from the resolver snapshot.

Guards are pure functions: same roles and snapshot, same decision.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from tableside.core.roles import (
    LANDING_PATH,
    SIGN_IN_PATH,
    UNAUTHORIZED_PATH,
    Role,
    home_path_for,
)
from tableside.models.principal import Principal
from tableside.services.auth.session_resolver import ResolverSnapshot, ResolverStatus


class DecisionKind(str, Enum):
    SHOW_LOADING = "show_loading"
    SHOW_CHILDREN = "show_children"
    REDIRECT = "redirect"


@dataclass(frozen=True)
class RenderDecision:
    """What the UI should render for a route."""
    kind: DecisionKind
    path: Optional[str] = None

    @classmethod
    def loading(cls) -> "RenderDecision":
        return cls(DecisionKind.SHOW_LOADING)

    @classmethod
    def children(cls) -> "RenderDecision":
        return cls(DecisionKind.SHOW_CHILDREN)

    @classmethod
    def redirect(cls, path: str) -> "RenderDecision":
        return cls(DecisionKind.REDIRECT, path)

    @property
    def is_redirect(self) -> bool:
        return self.kind == DecisionKind.REDIRECT


ShowLoading = RenderDecision.loading()
ShowChildren = RenderDecision.children()


def guard(required_roles: Iterable[Role], snapshot: ResolverSnapshot) -> RenderDecision:
    """
    Decide what a protected route renders.

    Nothing but the loading state is shown until the role is known. An
    empty role set means any visitor, signed in or not, may enter.
    """
    if snapshot.is_pending:
        return ShowLoading

    roles = frozenset(required_roles)
    if not roles:
        return ShowChildren

    principal = snapshot.principal
    if snapshot.status == ResolverStatus.ERROR or not principal.is_authenticated:
        return RenderDecision.redirect(SIGN_IN_PATH)

    if principal.role in roles:
        return ShowChildren

    # Platform admins are sent to their console instead of the unauthorized page
    if principal.role == Role.SUPER_ADMIN:
        return RenderDecision.redirect(home_path_for(Role.SUPER_ADMIN))
    return RenderDecision.redirect(UNAUTHORIZED_PATH)


def public_only_guard(snapshot: ResolverSnapshot) -> RenderDecision:
    """Guard for pages like sign-in that make no sense once authenticated."""
    if snapshot.is_pending:
        return ShowLoading
    if snapshot.principal.is_authenticated:
        return RenderDecision.redirect(home_path_for(snapshot.principal.role))
    return ShowChildren


def post_sign_in_path(principal: Principal) -> str:
    """Where to navigate right after a successful sign-in."""
    if not principal.is_authenticated:
        return SIGN_IN_PATH
    return home_path_for(principal.role)


def catch_all_redirect(snapshot: ResolverSnapshot) -> RenderDecision:
    """Unknown paths send authenticated users home and everyone else to the landing page."""
    if snapshot.is_pending:
        return ShowLoading
    if snapshot.principal.is_authenticated:
        return RenderDecision.redirect(home_path_for(snapshot.principal.role))
    return RenderDecision.redirect(LANDING_PATH)
