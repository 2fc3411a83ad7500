import mimetypes
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional, Union

import uvicorn
from fastapi import BackgroundTasks, FastAPI, File, Request, UploadFile
from fastapi.responses import PlainTextResponse, StreamingResponse

from image_store import config
from image_store.app.errors import InvalidInput, NotFound, StorageUnavailable
from image_store.app.services.filesystem import LocalFileSystem
from image_store.app.services.folder_store import FolderStore, UpsertOutcome
from image_store.logger_config import setup_logger
from image_store.models.health import HealthOut
from image_store.monitor import Monitor

# Data storage paths
STORAGE_ROOT = Path(config.STORAGE_ROOT)
TEMP_DIR = Path(config.TEMP_DIR)

# Logger setup
logger = setup_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.folder_store = FolderStore(STORAGE_ROOT, LocalFileSystem(TEMP_DIR))
    await app.state.folder_store.initialize()
    app.state.monitor = Monitor(config.FAILURE_THRESHOLD, config.FAILURE_WINDOW_SECONDS)
    yield


app = FastAPI(title="Image Folder Server", lifespan=lifespan)


@app.exception_handler(InvalidInput)
async def invalid_input_handler(request: Request, exc: InvalidInput):
    logger.info(f"Rejected {request.method} {request.url.path}: {exc.message}")
    return PlainTextResponse(exc.message, status_code=400)


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return PlainTextResponse(exc.message, status_code=404)


@app.exception_handler(StorageUnavailable)
async def storage_unavailable_handler(request: Request, exc: StorageUnavailable):
    # Details were logged where the failure happened; keep paths out of the response
    return PlainTextResponse("Storage error, please try again later", status_code=500)


@app.middleware("http")
async def record_storage_outcome(request: Request, call_next):
    """Feed every storage request's outcome into the failure monitor."""
    if request.url.path == "/health":
        return await call_next(request)

    monitor = request.app.state.monitor
    try:
        response = await call_next(request)
    except Exception:
        monitor.fail()
        raise
    if response.status_code >= 500:
        monitor.fail()
    else:
        monitor.pass_()
    return response


async def read_upload(image: Optional[Union[UploadFile, str]]) -> bytes:
    """Read an uploaded part, enforcing presence and the size limit."""
    # A plain form field under the same name is not a file part
    if image is None or isinstance(image, str):
        raise InvalidInput("No file uploaded")

    image.file.seek(0, 2)  # Seek to end
    size = image.file.tell()
    image.file.seek(0)
    logger.debug(f"Upload size: {size} bytes")

    if size == 0:
        raise InvalidInput("No file uploaded")
    if size > config.MAX_UPLOAD_SIZE:
        raise InvalidInput(f"File exceeds maximum allowed size ({config.MAX_UPLOAD_SIZE} bytes)")
    return await image.read()


@app.post("/upload/{folder}")
async def upload_image(folder: str, request: Request, image: Optional[Union[UploadFile, str]] = File(None)):
    """Upload a new image into a folder under its own filename.

    An existing file with the same name is overwritten.
    """
    store = request.app.state.folder_store
    logger.info(f"Receiving upload request for folder: {folder}")

    data = await read_upload(image)
    filename = await store.create(folder, image.filename, data)

    logger.info(f"Stored {filename} in folder {folder}")
    return PlainTextResponse(f'File "{filename}" uploaded to folder "{folder}"')


@app.put("/upload/{folder}/{filename}")
async def replace_image(folder: str, filename: str, request: Request, image: Optional[Union[UploadFile, str]] = File(None)):
    """Create an image if it is missing; an existing one is reported as updated and kept as is."""
    store = request.app.state.folder_store
    logger.info(f"Receiving replace request for {folder}/{filename}")

    data = await read_upload(image)
    outcome = await store.upsert(folder, filename, data)

    logger.info(f"Replace of {folder}/{filename} finished: {outcome.value}")
    if outcome is UpsertOutcome.CREATED:
        return PlainTextResponse(f'File "{filename}" in folder "{folder}" created')
    return PlainTextResponse(f'File "{filename}" in folder "{folder}" updated')


@app.delete("/upload/{folder}/{filename}")
async def delete_image(folder: str, filename: str, request: Request):
    """Delete an image. Deleting a missing image still succeeds."""
    store = request.app.state.folder_store
    logger.info(f"Receiving delete request for {folder}/{filename}")

    existed = await store.delete(folder, filename)

    if existed:
        logger.info(f"Deleted {folder}/{filename}")
        return PlainTextResponse(f'File "{filename}" in folder "{folder}" deleted')
    return PlainTextResponse(f'File "{filename}" in folder "{folder}" not found, nothing to delete')


@app.delete("/images/{folder}")
async def delete_folder(folder: str, request: Request):
    """Delete a folder and all images in it."""
    store = request.app.state.folder_store
    logger.info(f"Receiving folder delete request for {folder}")

    await store.delete_all(folder)

    logger.info(f"Deleted folder {folder}")
    return PlainTextResponse(f'Folder "{folder}" and all its files deleted')


# Registered before the image route so "count" is never taken as a filename
@app.get("/images/{folder}/count")
async def count_images(folder: str, request: Request):
    store = request.app.state.folder_store
    try:
        count = await store.count(folder)
    except StorageUnavailable:
        return PlainTextResponse("0", status_code=500)
    return PlainTextResponse(str(count))


@app.get("/images/{folder}/{filename}")
async def get_image(folder: str, filename: str, request: Request):
    """Stream an image back to the client."""
    store = request.app.state.folder_store
    logger.info(f"Receiving download request for {folder}/{filename}")

    fetched = await store.fetch(folder, filename)

    # Runs after the response even if the client went away mid-stream
    tasks = BackgroundTasks()
    tasks.add_task(fetched.close)

    content_type, _ = mimetypes.guess_type(fetched.filename)
    return StreamingResponse(
        fetched.chunks,
        media_type=content_type or "application/octet-stream",
        headers={"content-length": str(fetched.size)},
        background=tasks
    )


@app.get("/health", response_model=HealthOut)
async def health(request: Request):
    monitor = request.app.state.monitor
    status = "degraded" if monitor.degraded else "ok"
    return HealthOut(status=status, **monitor.stats)


def run():
    logger.info("Starting image folder server...")
    logger.info(f"Storage root: {STORAGE_ROOT}")
    logger.info(f"Temporary directory: {TEMP_DIR}")
    uvicorn.run(app, host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    run()
