"""Model gateways and the resilience layer around them."""

from agentsched.core.providers.base import ModelGateway
from agentsched.core.providers.resilience import ResilientGateway

__all__ = ["ModelGateway", "ResilientGateway"]
