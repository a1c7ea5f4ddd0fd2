"""Core utilities: caller identity, service wiring."""
from .identity import get_identity, Identity
from .services import build_services, get_services, IntakeServices

__all__ = ["get_identity", "Identity", "build_services", "get_services", "IntakeServices"]
