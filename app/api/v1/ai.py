"""AI tutoring endpoints: guidance, provider status and provider probes."""

import logging

from fastapi import APIRouter, Depends, Request

from app.core.config import settings
from app.core.dependencies import get_current_user, get_tutor_service
from app.core.exceptions import BadRequestError
from app.core.rate_limit import limiter
from app.schemas.ai import (
    AiStatusResponse,
    GuidanceRequest,
    GuidanceResponse,
    ProviderAttemptResponse,
    ProviderProbeResponse,
)
from app.tutor.service import TutorService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["ai"])


@router.post("/guidance", response_model=GuidanceResponse)
@limiter.limit(settings.guidance_rate_limit)
async def get_guidance(
    request: Request,
    body: GuidanceRequest,
    user: str = Depends(get_current_user),
    service: TutorService = Depends(get_tutor_service),
):
    if not body.query.strip() and not body.files:
        raise BadRequestError("Query or files are required")

    result = await service.get_guidance(
        body.query,
        files=[f.to_domain() for f in body.files],
        history=[m.to_domain() for m in body.conversation_history],
        preferred_provider=body.preferred_provider,
    )
    logger.info(
        "Guidance served by %s in %dms (%d chars) for %s",
        result.provider_name,
        result.elapsed_ms,
        len(result.guidance_text),
        user,
    )

    return GuidanceResponse(
        guidance=result.guidance_text,
        provider=result.provider_name,
        model=result.model_name,
        speed=result.speed,
        response_time_ms=result.elapsed_ms,
        query=body.query,
        detected_subject=result.detected_subject,
        problem_complexity=result.problem_complexity,
        conversation_length=result.conversation_length,
        used_fallback=result.used_fallback,
        attempts=[
            ProviderAttemptResponse(
                provider=a.provider_name, reason=a.reason, message=a.message, elapsed_ms=a.elapsed_ms
            )
            for a in result.attempts
        ],
        available_providers=service.registry.to_list(),
        created_at=result.created_at,
    )


@router.get("/status", response_model=AiStatusResponse)
async def ai_status(service: TutorService = Depends(get_tutor_service)):
    return service.get_status()


@router.post("/providers/test", response_model=ProviderProbeResponse)
async def test_providers(
    user: str = Depends(get_current_user),
    service: TutorService = Depends(get_tutor_service),
):
    results = await service.probe_providers()
    return {
        "results": results,
        "total_providers": len(results),
        "working_providers": sum(1 for r in results if r["status"] == "success"),
    }
