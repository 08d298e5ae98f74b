"""
Memberships router.

Mounts under ``/api/memberships`` (prefix set in ``main.py``).

The organization/region management system calls this endpoint whenever a
farmer joins or leaves an organization, or an organization moves between
regions.

Endpoints
---------
PUT /  — Create or update one membership.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from budget_ledger.database import get_db
from budget_ledger.schemas.membership import MembershipResponse, MembershipUpdate
from budget_ledger.services import membership_service
from budget_ledger.services.identity_service import get_actor_id

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Memberships"])


@router.put(
    "",
    response_model=MembershipResponse,
    summary="Sync a membership",
    responses={401: {"description": "Missing X-Actor-Id header."}},
)
def put_membership(
    body: MembershipUpdate,
    db: Annotated[Session, Depends(get_db)],
    actor_id: Annotated[str, Depends(get_actor_id)],
) -> MembershipResponse:
    logger.debug(
        "PUT /memberships %s in %s active=%s by %s",
        body.child.label, body.parent.label, body.active, actor_id,
    )
    membership = membership_service.set_membership(db, body.child, body.parent, body.active)
    return MembershipResponse.model_validate(membership)
