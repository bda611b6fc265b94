from __future__ import annotations

from typing import Any


class EngineError(ValueError):
    """Structured engine error for stable API and CLI responses."""

    def __init__(self, code: str, message: str, *, hint: str | None = None, **context: Any) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.hint = hint
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.hint:
            payload["hint"] = self.hint
        for key, value in self.context.items():
            if value is not None:
                payload[key] = value
        return payload


class CatalogError(ValueError):
    """Raised when the packaged quest catalog is missing or malformed."""
