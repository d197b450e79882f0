"""Request interception for rate limiters.

``wrap`` turns any ``decide(key) -> bool`` callable into a Starlette HTTP
middleware function. Every window strategy reuses it, so key derivation and
the rejection shape live in one place.

Usage:
    app.middleware("http")(wrap(limiter.has_limit_exceeded, use_origin_address=True))
"""

from __future__ import annotations

from typing import Awaitable, Callable, Iterable

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.routing import Match

from ratewall.core.keys import derive_bucket_key, resolve_client_address

Decide = Callable[[str], bool]
CallNext = Callable[[Request], Awaitable[Response]]
Interceptor = Callable[[Request, CallNext], Awaitable[Response]]

REJECTION_MESSAGE = "Too many requests"


def build_rejection_body(resource_id: str | None = None) -> dict[str, str]:
    """Build the 429 payload. Never carries counts, keys or storage errors."""
    body = {"message": REJECTION_MESSAGE}
    if resource_id is not None:
        body["resourceID"] = resource_id
    return body


def resolve_resource_id(request: Request, param: str) -> str | None:
    """Read a path parameter before routing has run.

    HTTP middleware executes ahead of the router, so path parameters are
    resolved by matching the request against the application's routes.

    Args:
        request: Incoming request.
        param: Path parameter name (e.g. ``api_id``).

    Returns:
        The parameter value as a string, or None if no route supplies it.
    """

    path_params = request.scope.get("path_params") or {}
    if param in path_params:
        return str(path_params[param])

    router = getattr(request.scope.get("app"), "router", None)
    for route in getattr(router, "routes", ()):
        match, child_scope = route.matches(request.scope)
        if match == Match.FULL:
            value = child_scope.get("path_params", {}).get(param)
            return None if value is None else str(value)
    return None


def wrap(
    decide: Decide,
    *,
    use_origin_address: bool,
    trust_forwarded_headers: bool = False,
    include_resource_id: bool = False,
    resource_id_param: str = "api_id",
    exempt_paths: Iterable[str] = (),
) -> Interceptor:
    """Build a middleware that consults ``decide`` before every request.

    Args:
        decide: Strategy callback; returns True when the request must be
            rejected. Called with the bucket key in a worker thread because it
            may block on a store round trip.
        use_origin_address: Scope bucket keys to the caller address.
        trust_forwarded_headers: Resolve the caller from proxy headers.
        include_resource_id: Add ``resourceID`` to the rejection body.
        resource_id_param: Path parameter naming the limited resource.
        exempt_paths: Exact paths that bypass the limiter.

    Returns:
        Async ``(request, call_next) -> response`` middleware function.
    """

    exempt = frozenset(exempt_paths)

    async def rate_limit_middleware(request: Request, call_next: CallNext) -> Response:
        route_identity = request.url.path
        if route_identity in exempt:
            return await call_next(request)

        address = None
        if use_origin_address:
            address = resolve_client_address(
                request, trust_forwarded_headers=trust_forwarded_headers
            )
        key = derive_bucket_key(
            route_identity, use_origin_address=use_origin_address, address=address
        )

        if not await run_in_threadpool(decide, key):
            return await call_next(request)

        resource_id = None
        if include_resource_id:
            resource_id = resolve_resource_id(request, resource_id_param)
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content=build_rejection_body(resource_id),
        )

    return rate_limit_middleware
