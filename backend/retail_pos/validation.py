# Overview: Request payload shape checks shared by the API routes.

from __future__ import annotations

from typing import Any, Mapping

from .errors import InputValidationError


def require_json_object(body: Any) -> Mapping[str, Any]:
    """
    Return a parsed JSON body as a mapping.

    A missing or unparseable body counts as empty; arrays and scalars are
    rejected so field lookups never run against the wrong type.
    """
    if body is None:
        return {}
    if not isinstance(body, Mapping):
        raise InputValidationError(
            "request body must be a JSON object",
            details={"body_type": type(body).__name__},
        )
    return body
