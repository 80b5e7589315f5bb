"""Per-resource middleware.

Resources list middleware by name in their ``middleware`` config, for
``all`` actions or per action. A middleware is a callable
``(context, descriptor, action) -> None`` that raises a LuminaError to
reject the request.

Example:
    @resource_middleware("business-hours")
    def business_hours(context, descriptor, action):
        if not 9 <= datetime.now().hour < 17:
            raise Forbidden("Come back during business hours.")
"""

import logging
from collections.abc import Callable, Iterable
from typing import ClassVar

from lumina.errors import Forbidden, RegistryError, Unauthenticated
from lumina.registry.loader import ResourceRegistry
from lumina.registry.types import ModelDescriptor
from lumina.services.context import RequestContext

logger = logging.getLogger(__name__)

ResourceMiddleware = Callable[[RequestContext, ModelDescriptor, str], None]


class MiddlewareRegistry:
    _middleware: ClassVar[dict[str, ResourceMiddleware]] = {}

    @classmethod
    def register(cls, name: str, middleware: ResourceMiddleware) -> None:
        cls._middleware[name] = middleware

    @classmethod
    def get(cls, name: str) -> ResourceMiddleware:
        return cls._middleware[name]

    @classmethod
    def has(cls, name: str) -> bool:
        return name in cls._middleware

    @classmethod
    def unregister(cls, name: str) -> None:
        cls._middleware.pop(name, None)


def resource_middleware(name: str) -> Callable[[ResourceMiddleware], ResourceMiddleware]:
    def decorator(func: ResourceMiddleware) -> ResourceMiddleware:
        MiddlewareRegistry.register(name, func)
        return func

    return decorator


def run_middleware(
    names: Iterable[str], context: RequestContext, descriptor: ModelDescriptor, action: str
) -> None:
    for name in names:
        MiddlewareRegistry.get(name)(context, descriptor, action)


def check_middleware(registry: ResourceRegistry) -> None:
    """Fail startup when a resource names unregistered middleware."""
    for descriptor in registry:
        for action, names in descriptor.middleware.items():
            for name in names:
                if not MiddlewareRegistry.has(name):
                    raise RegistryError(
                        f"resource '{descriptor.slug}': unknown middleware '{name}' for '{action}'"
                    )


@resource_middleware("auth")
def require_user(context: RequestContext, descriptor: ModelDescriptor, action: str) -> None:
    """Force authentication, even for public actions."""
    if context.user is None:
        raise Unauthenticated()


@resource_middleware("verified")
def require_verified_email(context: RequestContext, descriptor: ModelDescriptor, action: str) -> None:
    if context.user is None:
        raise Unauthenticated()
    if not context.user.is_verified:
        raise Forbidden("Your email address is not verified.")
