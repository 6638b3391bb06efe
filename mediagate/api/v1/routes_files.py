from __future__ import annotations

from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Query, Request, Response, status

from mediagate.api import deps
from mediagate.media.responder import build_file_response
from mediagate.services.media_service import ServedBytes, ServedFile

from . import schemas


router = APIRouter(prefix="/files", tags=["files"])


def _respond(served: ServedFile | ServedBytes, request: Request) -> Response:
    if isinstance(served, ServedBytes):
        headers = {"Cache-Control": served.cache_control} if served.cache_control else None
        return Response(content=served.payload, media_type=served.media_type, headers=headers)
    return build_file_response(
        served.path,
        media_type=served.media_type,
        range_header=request.headers.get("range"),
        if_none_match=request.headers.get("if-none-match"),
        cache_control=served.cache_control,
    )


@router.get(
    "/thumbnail/{file_id}",
    summary="Thumbnail for an image, video, PDF or HEIC file",
    responses={404: {"model": schemas.ErrorResponse}},
)
async def get_thumbnail(
    file_id: str,
    request: Request,
    service: deps.MediaServiceDependency,
    context: deps.AuthDependency,
    path: str = Query(default=""),
) -> Response:
    served = await service.get_thumbnail(context, file_id, path)
    return _respond(served, request)


@router.post(
    "/thumbnail/generate",
    response_model=schemas.ThumbnailGenerateResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start thumbnail generation in the background",
)
async def generate_thumbnail(
    payload: schemas.ThumbnailGenerateRequest,
    response: Response,
    service: deps.MediaServiceDependency,
    context: deps.AuthDependency,
) -> schemas.ThumbnailGenerateResponse:
    outcome = await service.generate_thumbnail(context, payload.id, payload.path)
    if outcome == "exists":
        response.status_code = status.HTTP_200_OK
    return schemas.ThumbnailGenerateResponse(status=outcome)


@router.get("/stream/{file_id}", summary="Stream a media file with byte-range support")
async def stream_file(
    file_id: str,
    request: Request,
    service: deps.MediaServiceDependency,
    context: deps.AuthDependency,
    path: str = Query(default=""),
) -> Response:
    served = await service.get_streaming_bytes(context, file_id, path)
    return _respond(served, request)


@router.get("/convert-3d", summary="Convert a 3D model to glTF")
async def convert_3d(
    request: Request,
    service: deps.MediaServiceDependency,
    context: deps.AuthDependency,
    file_id: str = Query(..., alias="id"),
    path: str = Query(default=""),
    binary: bool = Query(default=False, alias="bin"),
) -> Response:
    companion_url = f"{request.url.path}?{urlencode({'id': file_id, 'path': path, 'bin': 'true'})}"
    served = await service.convert_3d_model(context, file_id, path, companion_url=companion_url, binary=binary)
    return _respond(served, request)


@router.get("/convert-heic", summary="Convert a HEIC/HEIF photo to JPEG")
async def convert_heic(
    request: Request,
    service: deps.MediaServiceDependency,
    context: deps.AuthDependency,
    file_id: str = Query(..., alias="id"),
    path: str = Query(default=""),
) -> Response:
    served = await service.convert_heic(context, file_id, path)
    return _respond(served, request)


@router.get("/parse-xlsx", response_model=schemas.SheetsResponse, summary="Read spreadsheet cells")
async def parse_xlsx(
    service: deps.MediaServiceDependency,
    context: deps.AuthDependency,
    file_id: str = Query(..., alias="id"),
    path: str = Query(default=""),
) -> schemas.SheetsResponse:
    sheets = await service.convert_office_sheet(context, file_id, path)
    return schemas.SheetsResponse(sheets=[schemas.SheetPayload(name=sheet.name, data=sheet.rows) for sheet in sheets])


@router.get("/optimize-image/{file_id}", summary="Resize and re-encode an image as WebP")
async def optimize_image(
    file_id: str,
    request: Request,
    service: deps.MediaServiceDependency,
    context: deps.AuthDependency,
    path: str = Query(default=""),
    quality: Optional[int] = Query(default=None),
    w: Optional[int] = Query(default=None, ge=1),
    h: Optional[int] = Query(default=None, ge=1),
) -> Response:
    served = await service.optimize_image(context, file_id, path, quality=quality, max_width=w, max_height=h)
    return _respond(served, request)


__all__ = ["router"]
