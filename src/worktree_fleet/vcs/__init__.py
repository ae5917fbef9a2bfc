"""Version-control access."""

from .gateway import GitGateway, GitResult, VersionControlGateway

__all__ = ["GitGateway", "GitResult", "VersionControlGateway"]
