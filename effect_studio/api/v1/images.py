"""
Image Endpoints

POST /api/v1/images/upload         - Store a source image, returns its id
GET  /api/v1/images/file/{image_id} - Fetch stored image bytes
"""

from fastapi import APIRouter, Depends, UploadFile, File, Request, Response
from pydantic import BaseModel

from effect_studio.core.logging import get_logger
from effect_studio.api.dependencies import get_image_store
from effect_studio.modules.imagery.images import ImageStore

logger = get_logger(__name__)
router = APIRouter()

# Image ids are never reused, so stored bytes never change
IMMUTABLE_CACHE_CONTROL = "public, max-age=31536000, immutable"


class UploadResponse(BaseModel):
    image_id: str
    width: int
    height: int
    format: str
    byte_size: int
    image_url: str


@router.post("/upload", response_model=UploadResponse, status_code=201)
async def upload_image(
    request: Request,
    image: UploadFile = File(..., description="JPEG, PNG or WebP image"),
    image_store: ImageStore = Depends(get_image_store)
):
    """
    Upload a source image.

    The image is validated (size, decodability, format) and downscaled to
    the configured longest side before it is stored.
    """
    data = await image.read()
    logger.info(
        "upload_received",
        filename=image.filename,
        content_type=image.content_type,
        size_bytes=len(data)
    )

    blob = await image_store.put(data, declared_mime=image.content_type)

    return UploadResponse(
        image_id=blob.image_id,
        image_url=str(request.url_for("get_image_file", image_id=blob.image_id).path),
        **blob.public_metadata()
    )


@router.get("/file/{image_id}", name="get_image_file")
async def get_image_file(
    image_id: str,
    image_store: ImageStore = Depends(get_image_store)
):
    """Serve a stored image (source or result)."""
    blob, data = await image_store.get_with_metadata(image_id)
    return Response(
        content=data,
        media_type=blob.content_type,
        headers={"Cache-Control": IMMUTABLE_CACHE_CONTROL}
    )
