"""Process-wide deployment configuration, the source of the current version."""

import logging
import os
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional, Tuple

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.core.signals import setting_changed
from django.dispatch import receiver

logger = logging.getLogger(__name__)

COOKIE_NAME = "__vdpl"
DEFAULT_MAX_AGE = 300
DEFAULT_ENVIRONMENT = "development"
DEFAULT_REGION = "local"
LOCAL_ENVIRONMENTS = ("development", "local")
FAVICON_PATTERN = r"^/favicon\.ico$"
VERSION_PATTERN = re.compile(r"^[A-Za-z0-9_.:\-]{1,128}$")

SETTINGS_PREFIX = "SKEW_PROTECTION_"


def _clean(value) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _setting_or_env(setting_name: str, env_name: str) -> Optional[str]:
    value = _clean(getattr(settings, SETTINGS_PREFIX + setting_name, None))
    if value is None:
        value = _clean(os.environ.get(env_name))
    return value


def static_path_pattern(static_url: Optional[str]) -> Optional[str]:
    """
    Turn `STATIC_URL` into a path regex, or None if assets live on another host.
    """
    if not static_url or "://" in static_url or static_url.startswith("//"):
        return None
    prefix = "/" + static_url.strip("/")
    if prefix == "/":
        return None
    return "^%s/" % re.escape(prefix)


def default_excluded_paths() -> Tuple[str, ...]:
    patterns = [static_path_pattern(getattr(settings, "STATIC_URL", None))]
    patterns.append(FAVICON_PATTERN)
    return tuple(p for p in patterns if p)


def _check_paths(paths) -> Tuple[str, ...]:
    if not isinstance(paths, (list, tuple)) or not all(
        isinstance(p, str) for p in paths
    ):
        raise ImproperlyConfigured(
            f"Skew protection excluded paths must be a list of regex strings, "
            f"got {paths!r}."
        )
    return tuple(paths)


def _compile_path(pattern: str) -> re.Pattern:
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise ImproperlyConfigured(
            f"Invalid skew protection excluded path {pattern!r}: {exc}"
        ) from exc


@dataclass(frozen=True)
class DeploymentConfig:
    """
    Immutable description of the running deployment.

    Built once per process and handed to the middleware. Nothing here changes
    while the process is alive, so instances are safe to share across threads.
    """

    deployment_id: Optional[str] = None
    environment: str = DEFAULT_ENVIRONMENT
    region: str = DEFAULT_REGION
    cookie_name: str = COOKIE_NAME
    max_age: int = DEFAULT_MAX_AGE
    secure: Optional[bool] = None
    excluded_paths: Tuple[str, ...] = (r"^/static/", FAVICON_PATTERN)
    excluded_patterns: Tuple[re.Pattern, ...] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self):
        # Blank identifiers count as unset.
        object.__setattr__(self, "deployment_id", _clean(self.deployment_id))
        if self.deployment_id and not VERSION_PATTERN.match(self.deployment_id):
            raise ImproperlyConfigured(
                f"Invalid deployment id {self.deployment_id!r}, expected up to 128 "
                "letters, digits or any of '_.:-'."
            )
        if not isinstance(self.cookie_name, str) or not self.cookie_name:
            raise ImproperlyConfigured("Skew protection cookie name cannot be empty.")
        if isinstance(self.max_age, bool) or not isinstance(self.max_age, int):
            raise ImproperlyConfigured(
                f"Skew protection max age must be an integer, got {self.max_age!r}."
            )
        if self.max_age <= 0:
            raise ImproperlyConfigured(
                f"Skew protection max age must be positive, got {self.max_age}."
            )
        if self.secure is not None and not isinstance(self.secure, bool):
            raise ImproperlyConfigured(
                f"Skew protection secure flag must be True, False or None, "
                f"got {self.secure!r}."
            )
        object.__setattr__(self, "excluded_paths", _check_paths(self.excluded_paths))
        object.__setattr__(
            self,
            "excluded_patterns",
            tuple(_compile_path(p) for p in self.excluded_paths),
        )

    def current_version(self) -> Optional[str]:
        """Return the active deployment identifier, or None if unconfigured."""
        return self.deployment_id

    @property
    def is_local(self) -> bool:
        return self.deployment_id is None

    @property
    def secure_cookie(self) -> bool:
        if self.secure is not None:
            return self.secure
        return self.environment not in LOCAL_ENVIRONMENTS

    @classmethod
    def from_settings(cls) -> "DeploymentConfig":
        """
        Read the configuration from Django settings.

        Identity values fall back to the `DEPLOYMENT_ID`, `DEPLOYMENT_ENV` and
        `DEPLOYMENT_REGION` environment variables when the matching
        `SKEW_PROTECTION_*` setting is unset.
        """
        excluded_paths = getattr(settings, SETTINGS_PREFIX + "EXCLUDED_PATHS", None)
        if excluded_paths is None:
            excluded_paths = default_excluded_paths()

        max_age = getattr(settings, SETTINGS_PREFIX + "MAX_AGE", DEFAULT_MAX_AGE)
        try:
            max_age = int(max_age)
        except (TypeError, ValueError) as exc:
            raise ImproperlyConfigured(
                f"{SETTINGS_PREFIX}MAX_AGE must be an integer, got {max_age!r}."
            ) from exc

        config = cls(
            deployment_id=_setting_or_env("DEPLOYMENT_ID", "DEPLOYMENT_ID"),
            environment=_setting_or_env("ENVIRONMENT", "DEPLOYMENT_ENV")
            or DEFAULT_ENVIRONMENT,
            region=_setting_or_env("REGION", "DEPLOYMENT_REGION") or DEFAULT_REGION,
            cookie_name=getattr(settings, SETTINGS_PREFIX + "COOKIE_NAME", COOKIE_NAME),
            max_age=max_age,
            secure=getattr(settings, SETTINGS_PREFIX + "SECURE_COOKIE", None),
            excluded_paths=excluded_paths,
        )

        if config.is_local:
            logger.info("Skew protection: no deployment id configured, pinning disabled")
        else:
            logger.info(
                f"Skew protection: serving deployment {config.deployment_id} "
                f"({config.environment}, {config.region})"
            )
        return config


@lru_cache(maxsize=None)
def get_deployment_config() -> DeploymentConfig:
    """Return the configuration for this process, read from settings once."""
    return DeploymentConfig.from_settings()


@receiver(setting_changed)
def reset_deployment_config(*, setting, **kwargs):
    if setting.startswith(SETTINGS_PREFIX) or setting == "STATIC_URL":
        get_deployment_config.cache_clear()
