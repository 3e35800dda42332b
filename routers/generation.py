from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request

from core.composer_client import ComposerClientError, ContractError, HTTPError, NetworkError
from core.errors import CompositionError
from core.generation_service import GenerationService
from core.models import CompositionSummary, GenerateRequest
from routers.transport import get_engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["Generation"])


def get_generation_service(request: Request) -> GenerationService:
    service = getattr(request.app.state, "generation_service", None)
    if service is None:
        service = GenerationService(get_engine(request))
        request.app.state.generation_service = service
    return service


@router.post("/generate", response_model=CompositionSummary, summary="Prompt -> composition -> load")
def generate(request: Request, body: GenerateRequest) -> CompositionSummary:
    """
    Contract:
    - 200: generated and loaded
    - 502: generator unreachable / failed / replied with an unusable document
      (the previously loaded composition keeps playing)
    """
    service = get_generation_service(request)
    try:
        doc = service.generate_and_load(body.prompt, autoplay=body.autoplay)
    except NetworkError as e:
        logger.error("❌ [Generate] network: %s", e)
        raise HTTPException(status_code=502, detail=f"Generator unreachable: {e}")
    except HTTPError as e:
        logger.error("❌ [Generate] upstream HTTP %s: %s", e.status_code, e.body)
        raise HTTPException(status_code=502, detail=f"Generator error ({e.status_code}): {e.body}")
    except (ContractError, CompositionError) as e:
        logger.error("❌ [Generate] unusable reply: %s", e)
        raise HTTPException(status_code=502, detail=str(e))
    except ComposerClientError as e:
        raise HTTPException(status_code=502, detail=str(e))

    return CompositionSummary.from_engine(doc, service.engine)
