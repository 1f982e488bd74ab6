from fastapi import APIRouter, Depends, HTTPException, Request

from .errors import ConfigurationError
from .schemas import FindMatchesBody, FindRequestsBody, MatchingStatistics, MatchRequest, MatchResultSet
from .services import MatchingService

router = APIRouter()


def get_matching_service(request: Request) -> MatchingService:
    service = getattr(request.app.state, "matching_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Matching service not configured")
    return service


@router.post("/match", response_model=MatchResultSet)
async def match(data: FindMatchesBody, service: MatchingService = Depends(get_matching_service)):
    return await service.find_matches_for_request(
        data.request,
        limit=data.limit,
        filters=data.filters,
        min_score_threshold=data.min_score_threshold,
    )


@router.post("/match/requests", response_model=MatchResultSet)
async def match_requests(data: FindRequestsBody, service: MatchingService = Depends(get_matching_service)):
    try:
        return await service.find_matches_for_candidate(data.candidate, data.pagination)
    except ConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.post("/match/statistics", response_model=MatchingStatistics)
async def match_statistics(data: MatchRequest, service: MatchingService = Depends(get_matching_service)):
    return await service.get_matching_statistics(data)


@router.get("/match/weights")
async def match_weights(service: MatchingService = Depends(get_matching_service)):
    return service.weights.as_dict()
