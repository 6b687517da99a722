"""OpenAPI metadata and customization utilities.

Provides a helper to enrich the generated OpenAPI schema with:
- Tags metadata
- The 429 response (and its X-RateLimit-* headers) on every rate limited path

This keeps documentation concerns decoupled from the app factory.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI


_RATE_LIMIT_HEADERS = {
    "X-RateLimit-Limit": "Requests allowed per window.",
    "X-RateLimit-Remaining": "Requests left in the current window.",
    "X-RateLimit-Reset": "UNIX time (seconds) when the current window resets.",
}


def _too_many_requests_response() -> Dict[str, Any]:
    headers = {
        name: {"description": description, "schema": {"type": "integer"}}
        for name, description in _RATE_LIMIT_HEADERS.items()
    }
    headers["Retry-After"] = {
        "description": "Seconds until the client may retry.",
        "schema": {"type": "integer"},
    }
    return {
        "description": "Too Many Requests",
        "headers": headers,
        "content": {
            "application/json": {
                "schema": {
                    "type": "object",
                    "properties": {
                        "message": {"type": "string"},
                        "retryAfter": {"type": "integer"},
                    },
                    "required": ["message", "retryAfter"],
                }
            }
        },
    }


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add metadata and 429 docs.

    - Adds tags metadata if not present
    - Documents the 429 response on every path not exempt from rate limiting
    """

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        schema = original_openapi()

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {
                "name": "Health",
                "description": "Liveness checks.",
            },
            {
                "name": "Rate Limit",
                "description": "Runtime rate limit configuration and store selection.",
            },
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        exempt = app.state.rate_limit_exempt_paths
        paths = schema.get("paths", {})
        for path, methods in paths.items():
            if path in exempt:
                continue
            for method_obj in methods.values():
                if isinstance(method_obj, dict):
                    responses = method_obj.setdefault("responses", {})
                    responses.setdefault("429", _too_many_requests_response())

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
