"""Django middleware that pins each browser session to one deployment.

The routing layer in front of the service reads the `__vdpl` cookie and sends
the request to the deployment it names. Setting that cookie once per session,
and never refreshing it while it is valid, keeps every page, API call and asset
reference of the session on the same version during a rolling release.

Add to settings:

    MIDDLEWARE = [
        "skew_protection.middleware.SkewProtectionMiddleware",
        ...
    ]
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from django.http import HttpRequest, HttpResponse
from django.utils.cache import get_max_age, patch_cache_control, patch_vary_headers

from skew_protection.config import DeploymentConfig, get_deployment_config
from skew_protection.tokens import AffinityCookie, AffinityToken, CookieDirective

logger = logging.getLogger(__name__)

DEPLOYMENT_HEADER = "X-Deployment-ID"
CACHE_CONTROL_TEMPLATE = "private, max-age={max_age}, must-revalidate"
VARY_ON = ("Cookie",)


@dataclass(frozen=True)
class AffinityState:
    """Read-only view of the pinning decision, set on `request.deployment_affinity`."""

    version: Optional[str]
    token: Optional[AffinityToken] = None
    minted: bool = False

    @property
    def pinned_version(self) -> Optional[str]:
        if self.token is not None:
            return self.token.value
        if self.minted:
            return self.version
        return None


@dataclass(frozen=True)
class ResponseAugmentation:
    """Headers and cookies to add to a response, kept apart from the response."""

    headers: Tuple[Tuple[str, str], ...] = ()
    vary: Tuple[str, ...] = ()
    cookies: Tuple[CookieDirective, ...] = ()
    cache_max_age: Optional[int] = None

    def apply(self, response: HttpResponse) -> HttpResponse:
        for name, value in self.headers:
            response[name] = value
        if self.cache_max_age is not None:
            bound_cache_control(response, self.cache_max_age)
        if self.vary:
            patch_vary_headers(response, self.vary)
        for cookie in self.cookies:
            cookie.apply(response)
        return response


def bound_cache_control(response: HttpResponse, max_age: int) -> None:
    """
    Make the response private and cacheable for at most `max_age` seconds.

    A shorter lifetime already on the response is kept. A `no-store` response is
    only marked private.
    """
    directives = {
        directive.split("=", 1)[0].strip().lower()
        for directive in response.get("Cache-Control", "").split(",")
    }
    if "no-store" in directives:
        patch_cache_control(response, private=True)
        return

    existing = get_max_age(response)
    if existing is not None:
        max_age = min(existing, max_age)
    response["Cache-Control"] = CACHE_CONTROL_TEMPLATE.format(max_age=max_age)


def is_excluded(path: str, patterns: Iterable) -> bool:
    """Return True if `path` matches any of the exclusion regexes."""
    return any(re.match(pattern, path) for pattern in patterns)


def resolve_affinity(request: HttpRequest, config: DeploymentConfig) -> AffinityState:
    """Decide whether the request already carries a pin or needs a new one."""
    carrier = AffinityCookie.from_config(config)
    version = config.current_version()
    token = carrier.read(request)

    if token is not None:
        logger.debug(f"Skew protection: using existing {carrier.name}: {token.value}")
        return AffinityState(version=version, token=token)

    if carrier.raw_value(request) is not None:
        logger.warning(f"Skew protection: discarding malformed {carrier.name} cookie")

    if version is None:
        logger.debug("Skew protection: no deployment id, request left unpinned")
        return AffinityState(version=None)

    logger.info(f"Skew protection: set {carrier.name} cookie to deployment: {version}")
    return AffinityState(version=version, minted=True)


def build_augmentation(
    state: AffinityState, config: DeploymentConfig
) -> ResponseAugmentation:
    """
    Turn a pinning decision into response headers.

    The cache lifetime is capped at the cookie lifetime, so a cached page never
    outlives the pin it was rendered under, whether or not a cookie is set now.
    """
    headers = []
    cookies = []

    if state.minted:
        cookies.append(AffinityCookie.from_config(config).issue(state.version))

    if state.version is not None:
        headers.append((DEPLOYMENT_HEADER, state.version))

    return ResponseAugmentation(
        headers=tuple(headers),
        vary=VARY_ON,
        cookies=tuple(cookies),
        cache_max_age=config.max_age,
    )


class SkewProtectionMiddleware:
    """
    Pin sessions to the current deployment with the `__vdpl` cookie.

    A request without a valid cookie gets one naming the current deployment.
    A request that already has one keeps it untouched until it expires on the
    client. Every response is marked privately cacheable for no longer than the
    cookie lives and varies on `Cookie`. Static assets and the favicon are
    passed through.
    """

    def __init__(self, get_response, config: Optional[DeploymentConfig] = None):
        self.get_response = get_response
        self.config = config if config is not None else get_deployment_config()

    def __call__(self, request: HttpRequest) -> HttpResponse:
        if is_excluded(request.path, self.config.excluded_patterns):
            return self.get_response(request)

        state = resolve_affinity(request, self.config)
        request.deployment_affinity = state

        response = self.get_response(request)
        return build_augmentation(state, self.config).apply(response)
