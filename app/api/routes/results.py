from fastapi import APIRouter, Depends, Query

from app.api.deps import get_result_service
from app.services.results.service import ResultService

router = APIRouter(tags=["results"])


@router.get("/results")
def get_result(
    token: str = Query(..., min_length=1),
    results: ResultService = Depends(get_result_service),
) -> dict:
    """Capability-token access: the token is the only credential checked."""
    return results.get_result(token)
