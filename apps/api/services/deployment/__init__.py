from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .service import DeploymentService

__all__ = ["DeploymentService"]


def __getattr__(name: str):
    if name == "DeploymentService":
        from .service import DeploymentService

        return DeploymentService
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
