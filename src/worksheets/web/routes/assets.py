"""Asset endpoints: raw upload, download and image description.

Uploads send the file bytes as the request body, with the original name
in the ``filename`` query parameter.
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from worksheets.db import asset_store
from worksheets.llm.conversation import ConversationEngine
from worksheets.web.engine import get_engine
from worksheets.web.schemas import AssetCreated, DescriptionResponse

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/assets", tags=["assets"])


def _not_found(asset_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Asset '{asset_id}' not found",
    )


@router.post("", response_model=AssetCreated, status_code=status.HTTP_201_CREATED)
async def upload_asset(request: Request, filename: str = "") -> AssetCreated:
    data = await request.body()
    content_type = request.headers.get("content-type")
    if content_type == "application/octet-stream":
        content_type = None
    try:
        asset_id = asset_store.store_asset(data, filename, content_type)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    asset = asset_store.get_asset(asset_id)
    return AssetCreated(
        asset_id=asset_id,
        filename=filename,
        content_type=asset.content_type if asset else "",
    )


@router.get("/{asset_id}")
async def download_asset(asset_id: str) -> Response:
    asset = asset_store.get_asset(asset_id)
    if asset is None:
        raise _not_found(asset_id)
    return Response(content=asset.data, media_type=asset.content_type)


@router.post("/{asset_id}/describe", response_model=DescriptionResponse)
def describe_asset(
    asset_id: str,
    engine: ConversationEngine = Depends(get_engine),
) -> DescriptionResponse:
    """Best-effort description; ``description`` is null when none could be made."""
    asset = asset_store.get_asset(asset_id)
    if asset is None:
        raise _not_found(asset_id)
    return DescriptionResponse(asset_id=asset_id, description=engine.describe_image(asset))
