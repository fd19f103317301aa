"""Health check module."""

from coursetrack.health.router import router


__all__ = ["router"]
