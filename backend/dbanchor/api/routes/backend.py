"""Operator view of the active backend: status, schema report, reconnect."""

import logging
from typing import Any

from fastapi import APIRouter, Depends

from dbanchor.api.deps import HandleDep, SelectorDep, require_admin_token
from dbanchor.bootstrap import bootstrap
from dbanchor.core.config import settings
from dbanchor.core.verify import SchemaVerifier
from dbanchor.initial_data import SCHEMA_EXPECTATIONS
from dbanchor.models import SchemaReport

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/backend", tags=["backend"])


@router.get("/status")
def backend_status(handle: HandleDep) -> dict[str, Any]:
    """Active backend (no secrets), the probes that chose it, pool stats."""
    return handle.describe()


@router.get("/schema")
def backend_schema(handle: HandleDep) -> SchemaReport:
    return SchemaVerifier(handle).verify(SCHEMA_EXPECTATIONS)


@router.post("/reconnect", dependencies=[Depends(require_admin_token)])
def reconnect(selector: SelectorDep) -> dict[str, Any]:
    """
    Re-run backend selection. When a different backend wins, its schema and
    reference data are brought up to date before it serves traffic.
    """
    previous = selector.handle
    handle = selector.reconnect()
    switched = handle is not previous
    if switched:
        logger.warning("Backend switched to %s by operator", handle.descriptor.name)
        bootstrap(
            selector,
            settings,
            migrate=settings.RUN_MIGRATIONS_ON_STARTUP,
            seed=settings.SEED_ON_STARTUP,
        )
    return {"switched": switched, **handle.describe()}
