"""
Identity collaborator for the ledger endpoints.

Authentication lives in the portal's identity provider, in front of this
service.  The ledger only needs an opaque actor identifier to record who
submitted, decided or allocated; it never validates it.

Provides:
- ``get_actor_id`` — FastAPI dependency that reads the ``X-Actor-Id``
  header forwarded by the identity provider.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Header

from budget_ledger.errors import MissingActorError


def get_actor_id(
    x_actor_id: Annotated[
        str | None,
        Header(
            description="Opaque identifier of the calling user, set by the identity provider.",
            max_length=64,
        ),
    ] = None,
) -> str:
    """Return the caller's opaque identifier.

    Raises:
        MissingActorError: If the header is missing or blank (HTTP 401).
    """
    if x_actor_id is None or not x_actor_id.strip():
        raise MissingActorError()
    return x_actor_id.strip()
