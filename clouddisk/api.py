"""
API routes for clouddisk-py
"""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Request, HTTPException, UploadFile, File, Form, Depends, Query
from fastapi.responses import RedirectResponse, Response, StreamingResponse
from starlette.background import BackgroundTask
from pydantic import BaseModel

from .models import ApiResponse, ResponseCode
from .auth import require_secret, check_secret, SECRET_FIELD
from .errors import ErrorKind, RangeNotSatisfiableError, StorageError
from .metrics import record_download, record_upload
from .middleware import get_client_ip
from .storage_server import StorageServer
from .utils import create_unsatisfied_range_header, format_file_size

logger = logging.getLogger(__name__)

# API router
api_router = APIRouter(prefix="/api", tags=["api"])

# Everything under /api/cloud needs the shared secret
cloud_router = APIRouter(prefix="/api/cloud", tags=["cloud"], dependencies=[Depends(require_secret)])


# Request models
class VerifyRequest(BaseModel):
    password: str = ""


class ListRequest(BaseModel):
    path: str = ""


class DownloadRequest(BaseModel):
    path: str = ""


class SearchRequest(BaseModel):
    path: str = ""
    query: str = ""
    types: Optional[List[str]] = None


class MkdirRequest(BaseModel):
    path: str = ""
    name: str


class RenameRequest(BaseModel):
    path: str
    new_name: str


class MoveRequest(BaseModel):
    items: List[str]
    target_path: str = ""


class DeleteRequest(BaseModel):
    paths: List[str]


def get_storage(request: Request) -> StorageServer:
    return request.app.state.storage


def _storage_http_exception(exc: StorageError) -> HTTPException:
    """Convert a StorageError into a HTTPException carrying its kind."""
    return HTTPException(
        status_code=exc.status_code,
        detail=ApiResponse(
            code=ResponseCode(exc.status_code).value,
            msg=exc.message,
            data={"kind": exc.kind.value}
        ).to_dict()
    )


def _bad_request(msg: str) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail=ApiResponse(
            code=ResponseCode.BAD_REQUEST.value,
            msg=msg,
            data={"kind": ErrorKind.INVALID_PATH.value}
        ).to_dict()
    )


def _split_types(values: Optional[List[str]]) -> Optional[List[str]]:
    """Accept both ``types=image&types=video`` and ``types=image,video``"""
    if not values:
        return None
    return [part for value in values for part in value.split(",") if part.strip()]


@api_router.get("/status")
async def get_status(request: Request):
    """Cached CPU/memory usage plus the caller's address"""
    snapshot = request.app.state.status.snapshot
    data = snapshot.to_dict()
    data["client_ip"] = get_client_ip(request)
    return ApiResponse(code=ResponseCode.SUCCESS.value, msg="success", data=data).to_dict()


@api_router.post("/auth/verify")
async def verify_secret(request: Request, verify_req: VerifyRequest):
    """Check a password without touching storage"""
    valid = await check_secret(request, verify_req.password)
    if not valid:
        logger.warning(f"Password verification failed from {get_client_ip(request)}")
    return ApiResponse(
        code=ResponseCode.SUCCESS.value,
        msg="success" if valid else "Invalid password",
        data={"valid": valid}
    ).to_dict()


async def _list(storage: StorageServer, path: str):
    try:
        listing = await storage.list_files(path)
    except StorageError as e:
        raise _storage_http_exception(e)

    return ApiResponse(code=ResponseCode.SUCCESS.value, msg="success", data=listing.to_dict()).to_dict()


@cloud_router.get("/list")
async def list_files(path: str = "", storage: StorageServer = Depends(get_storage)):
    """List directory contents"""
    return await _list(storage, path)


@cloud_router.post("/list")
async def list_files_post(list_req: ListRequest, storage: StorageServer = Depends(get_storage)):
    return await _list(storage, list_req.path)


async def _search(storage: StorageServer, path: str, query: str, types: Optional[List[str]]):
    try:
        entries, errors, truncated = await storage.search(path, query, types)
    except StorageError as e:
        raise _storage_http_exception(e)

    return ApiResponse(
        code=ResponseCode.SUCCESS.value,
        msg="success",
        data={
            "path": path,
            "query": query,
            "files": [entry.to_dict() for entry in entries],
            "errors": [error.to_dict() for error in errors],
            "truncated": truncated
        }
    ).to_dict()


@cloud_router.get("/search")
async def search_files(
    path: str = "",
    query: str = "",
    types: Optional[List[str]] = Query(None),
    storage: StorageServer = Depends(get_storage)
):
    """Recursive filename search below path"""
    return await _search(storage, path, query.strip(), _split_types(types))


@cloud_router.post("/search")
async def search_files_post(search_req: SearchRequest, storage: StorageServer = Depends(get_storage)):
    return await _search(storage, search_req.path, search_req.query.strip(), _split_types(search_req.types))


@cloud_router.post("/mkdir")
async def make_directory(mkdir_req: MkdirRequest, storage: StorageServer = Depends(get_storage)):
    """Create directory"""
    try:
        name, path = await storage.make_directory(mkdir_req.path, mkdir_req.name)
    except StorageError as e:
        raise _storage_http_exception(e)

    return ApiResponse(
        code=ResponseCode.SUCCESS.value,
        msg="Directory created successfully",
        data={"name": name, "path": path}
    ).to_dict()


@cloud_router.post("/upload")
async def upload_file(
    path: str = Form(""),
    file: UploadFile = File(...),
    storage: StorageServer = Depends(get_storage)
):
    """Upload file; an existing name gets a numbered suffix"""

    # Check file size
    max_size = storage.max_upload_size
    if max_size is not None and file.size is not None and file.size > max_size:
        raise HTTPException(
            status_code=413,
            detail=ApiResponse(
                code=ResponseCode.PAYLOAD_TOO_LARGE.value,
                msg=f"File too large (max: {format_file_size(max_size)})",
                data={"kind": ErrorKind.PAYLOAD_TOO_LARGE.value}
            ).to_dict()
        )

    try:
        stored_name, stored_path, size = await storage.upload_file(path, file.filename or "unnamed", file)
    except StorageError as e:
        raise _storage_http_exception(e)
    finally:
        await file.close()

    record_upload(size)

    return ApiResponse(
        code=ResponseCode.SUCCESS.value,
        msg="File uploaded successfully",
        data={
            "stored_name": stored_name,
            "stored_path": stored_path,
            "size": size
        }
    ).to_dict()


async def _serve_file(request: Request, storage: StorageServer, path: str, inline: bool) -> Response:
    """Stream a file honouring Range; 416 carries no body"""
    if not path:
        raise _bad_request("No path provided")

    range_header = request.headers.get("range")
    try:
        stream = await storage.open_download(path, range_header, inline)
    except RangeNotSatisfiableError as e:
        logger.warning(f"Range not satisfiable for {path!r}: {range_header!r} (size {e.size})")
        return Response(
            status_code=416,
            headers={
                "Content-Range": create_unsatisfied_range_header(e.size),
                "Accept-Ranges": "bytes",
            },
        )
    except StorageError as e:
        raise _storage_http_exception(e)

    # Wrap the stream to count bytes
    async def counted_body():
        complete = False
        try:
            async for chunk in stream:
                yield chunk
            complete = True
        finally:
            record_download(stream.status_code, stream.bytes_sent, complete)

    return StreamingResponse(
        counted_body(),
        status_code=stream.status_code,
        headers=stream.headers,
        background=BackgroundTask(stream.aclose),
    )


@cloud_router.get("/download")
async def download_file(
    request: Request,
    path: str = "",
    inline: bool = False,
    storage: StorageServer = Depends(get_storage)
):
    """Download file with range support"""
    return await _serve_file(request, storage, path, inline)


@cloud_router.post("/download")
async def download_file_post(
    request: Request,
    download_req: DownloadRequest,
    storage: StorageServer = Depends(get_storage)
):
    """Save-to-disk download with the path (and secret) in a JSON body"""
    return await _serve_file(request, storage, download_req.path, inline=False)


@cloud_router.get("/download/{file_path:path}")
async def download_file_by_path(
    request: Request,
    file_path: str,
    inline: bool = False,
    storage: StorageServer = Depends(get_storage)
):
    """Same as /download, with the path in the URL so players see a real filename"""
    return await _serve_file(request, storage, file_path, inline)


@cloud_router.get("/preview")
async def preview_file(request: Request, path: str = "", storage: StorageServer = Depends(get_storage)):
    """Redirect to the inline download of a file"""
    if not path:
        raise _bad_request("No path provided")

    try:
        storage.resolve(path)
    except StorageError as e:
        raise _storage_http_exception(e)

    params = {"path": path, "inline": "1"}
    # Media elements cannot send headers, so a query secret has to travel along
    secret = request.query_params.get(SECRET_FIELD)
    if secret:
        params[SECRET_FIELD] = secret

    url = request.url_for("download_file").include_query_params(**params)
    return RedirectResponse(url=str(url), status_code=307)


@cloud_router.post("/rename")
async def rename_item(rename_req: RenameRequest, storage: StorageServer = Depends(get_storage)):
    """Rename file or directory"""
    try:
        new_name, new_path = await storage.rename(rename_req.path, rename_req.new_name)
    except StorageError as e:
        raise _storage_http_exception(e)

    return ApiResponse(
        code=ResponseCode.SUCCESS.value,
        msg="Renamed successfully",
        data={"new_name": new_name, "new_path": new_path}
    ).to_dict()


@cloud_router.post("/move")
async def move_items(move_req: MoveRequest, storage: StorageServer = Depends(get_storage)):
    """Move items into a directory; each item succeeds or fails on its own"""
    if not move_req.items:
        raise _bad_request("No items to move")

    result = await storage.move_items(move_req.items, move_req.target_path)

    return ApiResponse(
        code=ResponseCode.SUCCESS.value,
        msg=f"Moved {result.moved}/{len(move_req.items)} items",
        data=result.to_dict()
    ).to_dict()


@cloud_router.post("/delete")
async def delete_items(delete_req: DeleteRequest, storage: StorageServer = Depends(get_storage)):
    """Delete files or directories"""
    deleted_paths, failed_paths = await storage.delete_paths(delete_req.paths)

    return ApiResponse(
        code=ResponseCode.SUCCESS.value,
        msg=f"Deleted {len(deleted_paths)} items",
        data={
            "deleted": deleted_paths,
            "failed": failed_paths
        }
    ).to_dict()


def setup_api_routes(app):
    """Setup API routes"""
    app.include_router(api_router)
    app.include_router(cloud_router)
    logger.info("API routes setup complete")
