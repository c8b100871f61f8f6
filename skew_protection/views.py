"""Diagnostic endpoint describing the deployment a session is pinned to."""

from typing import Optional

from django.http import HttpRequest, JsonResponse
from django.utils import timezone
from django.views import View

from skew_protection.config import (
    DEFAULT_ENVIRONMENT,
    DeploymentConfig,
    get_deployment_config,
)
from skew_protection.middleware import DEPLOYMENT_HEADER
from skew_protection.tokens import AffinityCookie

PINNED_MESSAGE = "✓ Skew protection active - pinned to deployment"
UNPINNED_MESSAGE = "⚠ Cookie not set yet"


def deployment_info(request: HttpRequest, config: DeploymentConfig) -> dict:
    token = AffinityCookie.from_config(config).read(request)
    cookie_value = token.value if token else None
    return {
        "deploymentId": config.current_version() or DEFAULT_ENVIRONMENT,
        "environment": config.environment,
        "region": config.region,
        "cookieValue": cookie_value,
        "timestamp": timezone.now().isoformat(),
        "message": PINNED_MESSAGE if cookie_value else UNPINNED_MESSAGE,
    }


class DeploymentInfoView(View):
    """
    Report the running deployment and the incoming affinity cookie as JSON.

    Only for inspection: the cookie reported is the one the browser sent, so the
    first request of a session shows no cookie even though one is being set.
    """

    http_method_names = ["get", "head", "options"]
    config: Optional[DeploymentConfig] = None

    def get(self, request, *args, **kwargs):
        config = self.config if self.config is not None else get_deployment_config()
        info = deployment_info(request, config)
        response = JsonResponse(info, json_dumps_params={"ensure_ascii": False})
        if config.current_version() is not None:
            response[DEPLOYMENT_HEADER] = config.current_version()
        return response
