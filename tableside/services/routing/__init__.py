from tableside.services.routing.guard import (
    DecisionKind,
    RenderDecision,
    ShowChildren,
    ShowLoading,
    catch_all_redirect,
    guard,
    post_sign_in_path,
    public_only_guard,
)
from tableside.services.routing.routes import ROUTES, Access, Navigation, RouteSpec, match_route, resolve_navigation

__all__ = [
    "DecisionKind",
    "RenderDecision",
    "ShowChildren",
    "ShowLoading",
    "catch_all_redirect",
    "guard",
    "post_sign_in_path",
    "public_only_guard",
    "ROUTES",
    "Access",
    "Navigation",
    "RouteSpec",
    "match_route",
    "resolve_navigation",
]
