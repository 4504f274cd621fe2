"""Handshake error codes and the messages surfaced to users."""

from __future__ import annotations

from typing import Optional

HANDSHAKE_ERROR_CODES = [
    "invalid_api_key",
    "world_not_found",
    "world_not_found_handshake",
]

ACTORS_REQUIRE_WORLD = "Actors require a worldId"
GENERIC_AUTH_FAILURE = "Authentication failed"


def describe_handshake_error(
    error_code: Optional[str],
    message: Optional[str],
    world_id: Optional[str] = None,
) -> str:
    """Map a rejected handshake to a descriptive, user-facing message."""

    world = f"'{world_id}'" if world_id else "(none)"
    if error_code == "invalid_api_key":
        return (
            "Invalid or expired API key. Check the api_key passed to Vitrus "
            "or create a new key in the dashboard."
        )
    if error_code == "world_not_found":
        return f"World {world} was not found or this API key cannot access it."
    if error_code == "world_not_found_handshake":
        return (
            f"World {world} was not found while authenticating. "
            "Check the world passed to Vitrus; actors and agents must share a world."
        )
    if message and ACTORS_REQUIRE_WORLD.lower() in message.lower():
        return (
            "Actors require a worldId. Pass world=... to Vitrus (or set VITRUS_WORLD_ID) "
            "before calling actor()."
        )
    return message or GENERIC_AUTH_FAILURE


__all__ = [
    "ACTORS_REQUIRE_WORLD",
    "GENERIC_AUTH_FAILURE",
    "HANDSHAKE_ERROR_CODES",
    "describe_handshake_error",
]
