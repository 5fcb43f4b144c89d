"""REST routes of the file manager API.

Endpoints:
    GET  /api/files              -- List a directory under the data root
    GET  /api/files/download     -- Download one file
    POST /api/files/upload       -- Multipart upload into a directory
    POST /api/files/delete       -- Delete a file or directory tree
    POST /api/files/create-dir   -- mkdir -p
    GET  /api/logs/stream        -- Server-Sent Events tail of the game's stdout log

File endpoints are plain ``def`` so FastAPI runs their blocking disk I/O
in its threadpool.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncIterator, Awaitable, Callable
from pathlib import Path
from typing import TextIO

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse, PlainTextResponse, StreamingResponse

from sidecar.api.files import (
    MAX_UPLOAD_BYTES,
    FileStore,
    PathAccessError,
    UploadTooLargeError,
    is_blocked_filename,
)
from sidecar.api.models import FileInfo, PathRequest
from sidecar.log import get_logger

logger = get_logger("api.routes")

router = APIRouter(prefix="/api", tags=["files"])

LOG_POLL_SECONDS = 0.5


def get_store(request: Request) -> FileStore:
    return request.app.state.store


def _resolve(store: FileStore, user_path: str) -> Path:
    try:
        return store.resolve(user_path)
    except PathAccessError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get("/files", response_model=list[FileInfo])
def list_files(path: str = "", store: FileStore = Depends(get_store)) -> list[FileInfo]:
    """List directory contents, sorted by name."""
    full_path = _resolve(store, path)
    try:
        return store.list_dir(full_path)
    except FileNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Directory not found") from exc
    except NotADirectoryError as exc:
        raise HTTPException(status_code=400, detail="Path is not a directory") from exc
    except OSError as exc:
        logger.error("read_directory_failed", path=str(full_path), error=str(exc))
        raise HTTPException(status_code=500, detail="Could not read directory") from exc


@router.get("/files/download")
def download_file(path: str = "", store: FileStore = Depends(get_store)) -> FileResponse:
    full_path = _resolve(store, path)
    if not full_path.exists():
        raise HTTPException(status_code=404, detail="File not found")
    if full_path.is_dir():
        raise HTTPException(status_code=400, detail="Cannot download a directory")
    return FileResponse(full_path, filename=full_path.name)


@router.post("/files/upload", status_code=201, response_class=PlainTextResponse)
def upload_file(
    request: Request,
    path: str = "",
    overwrite: bool = False,
    file: UploadFile = File(...),
    store: FileStore = Depends(get_store),
) -> str:
    """Upload a file into an existing directory.

    Executable and script extensions are refused. An existing file is only
    replaced with ``overwrite=true``.
    """
    directory = _resolve(store, path)
    if not directory.exists():
        raise HTTPException(status_code=400, detail="Destination directory does not exist")
    if not directory.is_dir():
        raise HTTPException(status_code=400, detail="Destination path is not a directory")

    filename = Path((file.filename or "").replace("\\", "/")).name
    if not filename or filename in (".", ".."):
        raise HTTPException(status_code=400, detail="Invalid destination filename")
    if is_blocked_filename(filename):
        logger.warning("upload_blocked_file_type", filename=filename)
        raise HTTPException(status_code=400, detail="File type not allowed for security reasons")
    if file.size is not None and file.size > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large")

    destination = directory / filename
    if destination.exists() and not overwrite:
        raise HTTPException(
            status_code=409,
            detail="File already exists. Use overwrite=true to replace it.",
        )

    client = request.client.host if request.client else ""
    logger.info(
        "file_upload_started",
        filename=filename,
        size=file.size,
        destination=str(destination),
        client_ip=client,
    )
    try:
        written = store.save_upload(file.file, destination)
    except UploadTooLargeError as exc:
        raise HTTPException(status_code=413, detail="File too large") from exc
    except OSError as exc:
        logger.error("file_upload_failed", path=str(destination), error=str(exc))
        raise HTTPException(status_code=500, detail="Could not save file") from exc

    logger.info("file_upload_completed", path=str(destination), size=written)
    return "File uploaded successfully\n"


@router.post("/files/delete", response_class=PlainTextResponse)
def delete_file(body: PathRequest, store: FileStore = Depends(get_store)) -> str:
    full_path = _resolve(store, body.path)
    if full_path == store.root:
        raise HTTPException(status_code=400, detail="Cannot delete root directory")
    try:
        store.delete(full_path)
    except OSError as exc:
        logger.error("delete_failed", path=str(full_path), error=str(exc))
        raise HTTPException(status_code=500, detail="Could not delete item") from exc
    return "Item deleted successfully\n"


@router.post("/files/create-dir", status_code=201, response_class=PlainTextResponse)
def create_dir(body: PathRequest, store: FileStore = Depends(get_store)) -> str:
    full_path = _resolve(store, body.path)
    try:
        store.make_dirs(full_path)
    except OSError as exc:
        logger.error("create_directory_failed", path=str(full_path), error=str(exc))
        raise HTTPException(status_code=500, detail="Could not create directory") from exc
    return "Directory created successfully\n"


@router.get("/logs/stream")
async def stream_stdout_log(request: Request) -> StreamingResponse:
    """Follow the game server's stdout log from its current end."""
    log_path: Path = request.app.state.stdout_log_path
    try:
        handle = open(log_path, encoding="utf-8", errors="replace")
    except OSError as exc:
        logger.error("log_stream_unavailable", path=str(log_path), error=str(exc))
        raise HTTPException(status_code=404, detail="Log file not available") from exc
    handle.seek(0, os.SEEK_END)
    logger.info("log_stream_connected", path=str(log_path))

    shutdown = request.app.state.shutdown

    async def finished() -> bool:
        if shutdown is not None and shutdown.is_set():
            return True
        return await request.is_disconnected()

    return StreamingResponse(
        tail_lines(handle, finished),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "Access-Control-Allow-Origin": "*",
        },
    )


async def tail_lines(
    handle: TextIO,
    finished: Callable[[], Awaitable[bool]],
    poll_seconds: float = LOG_POLL_SECONDS,
) -> AsyncIterator[str]:
    """Yield SSE ``data:`` events for each complete line appended to handle.

    A line is only sent once its newline has been written. Reads run in a
    worker thread so a slow disk never stalls the event loop. Closes the
    handle when ``finished`` reports the client or server is done.
    """
    pending = ""
    try:
        while not await finished():
            chunk = await asyncio.to_thread(handle.readline)
            if not chunk:
                await asyncio.sleep(poll_seconds)
                continue
            pending += chunk
            if not pending.endswith("\n"):
                continue
            yield f"data: {pending.strip()}\n\n"
            pending = ""
    finally:
        handle.close()
    logger.info("log_stream_closed")
