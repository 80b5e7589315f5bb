"""Resource services: the gated request pipeline and resource middleware."""

from lumina.services.context import RequestContext
from lumina.services.middleware import MiddlewareRegistry, resource_middleware
from lumina.services.resources import ResourceService

__all__ = ["MiddlewareRegistry", "RequestContext", "ResourceService", "resource_middleware"]
