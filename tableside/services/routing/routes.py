"""Application route table and navigation resolution."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

from tableside.core.roles import SIGN_IN_PATH, Role, home_path_for
from tableside.services.auth.session_resolver import ResolverSnapshot
from tableside.services.routing.guard import (
    RenderDecision,
    ShowLoading,
    catch_all_redirect,
    guard,
    public_only_guard,
)


class Access(str, Enum):
    OPEN = "open"  # anyone
    PUBLIC_ONLY = "public_only"  # signed-out visitors only
    PROTECTED = "protected"  # one of the route's roles
    HOME = "home"  # always redirects to the role's home


@dataclass(frozen=True)
class RouteSpec:
    pattern: str
    access: Access = Access.OPEN
    roles: FrozenSet[Role] = field(default_factory=frozenset)

    @property
    def segments(self) -> Tuple[str, ...]:
        return _split(self.pattern)

    def match(self, path: str) -> Optional[Dict[str, str]]:
        """Return the path parameters if `path` matches this pattern, else None."""
        parts = _split(path)
        if len(parts) != len(self.segments):
            return None
        params: Dict[str, str] = {}
        for expected, actual in zip(self.segments, parts):
            if expected.startswith(":"):
                params[expected[1:]] = actual
            elif expected != actual:
                return None
        return params


@dataclass(frozen=True)
class Navigation:
    """Outcome of navigating to a path."""
    decision: RenderDecision
    route: Optional[RouteSpec] = None
    params: Dict[str, str] = field(default_factory=dict)


def _split(path: str) -> Tuple[str, ...]:
    path = path.split("?", 1)[0].split("#", 1)[0]
    return tuple(part for part in path.strip("/").split("/") if part)


OWNER = frozenset({Role.RESTAURANT_OWNER})
STAFF = frozenset({Role.STAFF})
SUPER_ADMIN = frozenset({Role.SUPER_ADMIN})

ROUTES: List[RouteSpec] = [
    RouteSpec("/auth", Access.PUBLIC_ONLY),
    RouteSpec("/verify-email"),
    RouteSpec("/restaurant-setup", Access.PROTECTED, OWNER),
    RouteSpec("/menu/:restaurantId/item/:itemId"),
    RouteSpec("/menu/:restaurantId/:tableId"),
    RouteSpec("/menu/:restaurantId"),
    RouteSpec("/staff", Access.PROTECTED, STAFF),
    RouteSpec("/dashboard", Access.PROTECTED, OWNER),
    RouteSpec("/admin", Access.PROTECTED, SUPER_ADMIN),
    RouteSpec("/admin/restaurant/:restaurantId", Access.PROTECTED, SUPER_ADMIN),
    RouteSpec("/order/:orderId"),
    RouteSpec("/customer"),
    RouteSpec("/customer-auth"),
    RouteSpec("/customer-profile"),
    RouteSpec("/customer-orders"),
    RouteSpec("/customer-favorites"),
    RouteSpec("/customer-settings"),
    RouteSpec("/restaurants"),
    RouteSpec("/"),
    RouteSpec("/business"),
    RouteSpec("/home", Access.HOME),
]


def match_route(path: str, routes: Optional[List[RouteSpec]] = None) -> Tuple[Optional[RouteSpec], Dict[str, str]]:
    """First route whose pattern matches; literal segments are listed before parameters."""
    for route in routes if routes is not None else ROUTES:
        params = route.match(path)
        if params is not None:
            return route, params
    return None, {}


def resolve_navigation(
    path: str,
    snapshot: ResolverSnapshot,
    routes: Optional[List[RouteSpec]] = None,
) -> Navigation:
    """Decide what navigating to `path` renders for the current snapshot."""
    route, params = match_route(path, routes)
    if route is None:
        return Navigation(catch_all_redirect(snapshot))

    if route.access == Access.PUBLIC_ONLY:
        decision = public_only_guard(snapshot)
    elif route.access == Access.PROTECTED:
        decision = guard(route.roles, snapshot)
    elif route.access == Access.HOME:
        decision = _home_redirect(snapshot)
    else:
        decision = guard(frozenset(), snapshot)
    return Navigation(decision, route, params)


def _home_redirect(snapshot: ResolverSnapshot) -> RenderDecision:
    if snapshot.is_pending:
        return ShowLoading
    principal = snapshot.principal
    if principal.is_authenticated:
        return RenderDecision.redirect(home_path_for(principal.role))
    return RenderDecision.redirect(SIGN_IN_PATH)
