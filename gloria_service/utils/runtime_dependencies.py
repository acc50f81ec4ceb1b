"""Keep annotation-only imports alive for FastAPI.

Routers use ``from __future__ import annotations``, so FastAPI resolves
dependency aliases and schemas from module globals when it builds the
route. Linters see those names only in annotations and want them moved
under ``TYPE_CHECKING``; registering them here marks them as runtime imports.
"""

from __future__ import annotations

from typing import Any

__all__ = ["require_runtime_dependency"]

_RUNTIME_DEPENDENCIES: list[Any] = []


def require_runtime_dependency(*dependencies: Any) -> None:
    """Hold a reference to each object so its import counts as used at runtime."""
    _RUNTIME_DEPENDENCIES.extend(d for d in dependencies if d is not None)
