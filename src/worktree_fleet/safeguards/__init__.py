"""Safeguards that bound host resource use."""

from .resource_monitor import CreationCheck, ResourceMonitor

__all__ = ["CreationCheck", "ResourceMonitor"]
