"""Remote platform client interface."""

from stratus.platform.base import PlatformClient

__all__ = ["PlatformClient"]
