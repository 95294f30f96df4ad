"""
Path -> scope classification and route-policy lookup.

Both are pure functions over the ordered prefix tables in
config/route_policies.py. Matching is on whole path segments, so
"/administrator" never matches the "/admin" prefix.
"""

from typing import Dict, Iterable, Optional, Tuple, TypeVar

from portal_access.config.route_policies import FALLBACK_SCOPE, ROUTE_POLICIES, SCOPE_PREFIXES
from portal_access.modules.scopes.schemas import Scope

T = TypeVar("T")


def normalize_path(path: Optional[str]) -> str:
    """Strip query/fragment, collapse duplicate slashes and drop a trailing slash."""
    if not path:
        return "/"
    path = path.split("?", 1)[0].split("#", 1)[0]
    segments = [s for s in path.split("/") if s]
    return "/" + "/".join(segments)


def path_has_prefix(path: str, prefix: str) -> bool:
    if prefix == "/":
        return True
    return path == prefix or path.startswith(prefix.rstrip("/") + "/")


def longest_prefix_match(path: str, entries: Iterable[Tuple[str, T]]) -> Optional[Tuple[str, T]]:
    best = None
    for prefix, value in entries:
        if path_has_prefix(path, prefix) and (best is None or len(prefix) > len(best[0])):
            best = (prefix, value)
    return best


def classify(path: Optional[str]) -> Scope:
    match = longest_prefix_match(normalize_path(path), SCOPE_PREFIXES)
    return Scope(match[1] if match else FALLBACK_SCOPE)


def match_route(path: Optional[str]) -> Tuple[str, Dict]:
    """Most specific route policy for path; "/" always matches."""
    return longest_prefix_match(normalize_path(path), ROUTE_POLICIES.items())


def breadcrumbs(path: Optional[str]):
    """Labels from the root policy down to the matched one, following parent links"""
    prefix, policy = match_route(path)
    trail = []
    while policy is not None:
        trail.append({"path": prefix, "label": policy["label"]})
        prefix = policy.get("parent")
        policy = ROUTE_POLICIES.get(prefix) if prefix else None
    return list(reversed(trail))
