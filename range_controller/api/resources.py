# range_controller/api/resources.py
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from range_controller import schemas
from range_controller.auth import require_admin
from range_controller.services import Services, get_services

router = APIRouter(prefix="/resources", tags=["resources"])


@router.get("")
def get_cluster_resources(
    identity: schemas.Identity = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """
    Per-node CPU/memory/storage plus cluster totals.
    206 when some nodes could not be read, 500 when none could.
    """
    usage = services.manager.resource_usage()
    if usage["errors"] and not usage["nodes"]:
        status = 500
    elif usage["errors"]:
        status = 206
    else:
        status = 200
    return JSONResponse(status_code=status, content=usage)
