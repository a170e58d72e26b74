"""
Code Journal Backend — Maintenance Routes
==========================================

What:  Lets an editor run reconciliation on demand and read its report.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from codejournal.database import get_db_session
from codejournal.dependencies import get_current_user
from codejournal.exceptions import WrongPermissionsError
from codejournal.models import Capability, GlobalUser
from codejournal.schemas.common import ErrorResponse
from codejournal.schemas.submission import ReconcileReport
from codejournal.services.reconciliation import reconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/maintenance", tags=["Maintenance"])


@router.post(
    "/reconcile",
    response_model=ReconcileReport,
    responses={403: {"description": "Caller is not an editor", "model": ErrorResponse}},
    summary="Reconcile the relational and filesystem stores",
)
async def reconcile(
    caller: GlobalUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> ReconcileReport:
    if not caller.has(Capability.EDITOR):
        raise WrongPermissionsError(caller.id, required="editor")
    logger.info("Reconciliation requested by %s", caller.id)
    return await reconciler.run(db)
