from fastapi import APIRouter
from fastapi.responses import JSONResponse

from dbanchor.api.deps import SelectorDep
from dbanchor.core.health import liveness_check, readiness_check
from dbanchor.initial_data import SCHEMA_EXPECTATIONS

router = APIRouter(prefix="/utils", tags=["utils"])


@router.get("/liveness/", response_model=None)
async def liveness() -> bool | JSONResponse:
    """
    Liveness probe: is the process alive and responsive?

    Lightweight: no database I/O.  If this fails the container should be
    restarted by the orchestrator.
    """
    ok, failures = liveness_check()
    if not ok:
        return JSONResponse(
            status_code=503,
            content={"success": False, "message": "Process unhealthy", "data": failures},
        )
    return True


@router.get("/health-check/", response_model=None)
def health_check(selector: SelectorDep) -> bool | JSONResponse:
    """
    Readiness probe: can the service handle traffic?

    Checks: a backend is resolved, its pool hands out a live connection, and
    every expected table exists.
    Returns 200 with true if ready; 503 otherwise.
    """
    ok, failures = readiness_check(selector.handle, SCHEMA_EXPECTATIONS)
    if not ok:
        return JSONResponse(
            status_code=503,
            content={
                "success": False,
                "message": "Service Unavailable",
                "data": failures,
            },
        )
    return True
