from fastapi import APIRouter, UploadFile, File, Form, HTTPException, Depends
from typing import Optional
import logging
import os

from uniconvert.api.deps import get_orchestrator
from uniconvert.core.config import settings
from uniconvert.core.errors import TransientInfraError, ValidationError
from uniconvert.services.filenames import upload_filename
from uniconvert.services.orchestrator import Orchestrator
from uniconvert.services.storage_manager import remove_file

logger = logging.getLogger(__name__)

router = APIRouter()

CHUNK_SIZE = 1024 * 1024


def save_upload(file: UploadFile, uploads_dir: str, max_bytes: int) -> str:
    """stream an upload to disk under a random name, enforcing the size limit"""
    os.makedirs(uploads_dir, exist_ok=True)
    stored_path = os.path.join(uploads_dir, upload_filename(file.filename))
    size = 0
    with open(stored_path, "wb") as buffer:
        for chunk in iter(lambda: file.file.read(CHUNK_SIZE), b""):
            size += len(chunk)
            if size > max_bytes:
                break
            buffer.write(chunk)
    if size > max_bytes:
        remove_file(stored_path)
        raise HTTPException(status_code=413, detail=f"File exceeds the {max_bytes} byte limit")
    return stored_path


def queue_conversion(
    orchestrator: Orchestrator,
    file: Optional[UploadFile],
    target_format: Optional[str],
    webhook_url: Optional[str],
    options: dict,
    media_type: Optional[str] = None,
) -> dict:
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")
    if not target_format:
        raise HTTPException(status_code=400, detail="target_format is required")

    try:
        # reject unclassifiable uploads before writing anything to disk
        detected = orchestrator.router.classify(file.filename, media_type)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    input_path = save_upload(file, orchestrator.uploads_dir, settings.MAX_FILE_SIZE)
    try:
        job = orchestrator.submit(
            input_path,
            file.filename,
            target_format,
            options=options,
            webhook_url=webhook_url,
            media_type=detected.value,
        )
    except ValidationError as e:
        remove_file(input_path)
        raise HTTPException(status_code=400, detail=str(e))
    except TransientInfraError as e:
        remove_file(input_path)
        logger.error(f"failed to queue {detected.value} conversion: {e}")
        raise HTTPException(status_code=503, detail="Failed to queue conversion, try again later")

    response = {
        "job_id": job.id,
        "status": job.status,
        "message": f"{detected.value.capitalize()} conversion job queued",
    }
    if media_type is None:
        response["detected_type"] = detected.value
    return response


@router.post("/video", status_code=202)
def convert_video(
    file: Optional[UploadFile] = File(None),
    target_format: Optional[str] = Form(None),
    codec: Optional[str] = Form(None),
    quality: Optional[str] = Form(None),
    resolution: Optional[str] = Form(None),
    webhook_url: Optional[str] = Form(None),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    options = {"codec": codec, "quality": quality, "resolution": resolution}
    return queue_conversion(orchestrator, file, target_format, webhook_url, options, media_type="video")


@router.post("/audio", status_code=202)
def convert_audio(
    file: Optional[UploadFile] = File(None),
    target_format: Optional[str] = Form(None),
    bitrate: Optional[str] = Form(None),
    webhook_url: Optional[str] = Form(None),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    options = {"bitrate": bitrate}
    return queue_conversion(orchestrator, file, target_format, webhook_url, options, media_type="audio")


@router.post("/image", status_code=202)
def convert_image(
    file: Optional[UploadFile] = File(None),
    target_format: Optional[str] = Form(None),
    quality: Optional[str] = Form(None),
    resize: Optional[str] = Form(None),
    webhook_url: Optional[str] = Form(None),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    options = {"quality": quality, "resize": resize}
    return queue_conversion(orchestrator, file, target_format, webhook_url, options, media_type="image")


@router.post("/document", status_code=202)
def convert_document(
    file: Optional[UploadFile] = File(None),
    target_format: Optional[str] = Form(None),
    webhook_url: Optional[str] = Form(None),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    return queue_conversion(orchestrator, file, target_format, webhook_url, {}, media_type="document")


@router.post("/auto", status_code=202)
def convert_auto(
    file: Optional[UploadFile] = File(None),
    target_format: Optional[str] = Form(None),
    codec: Optional[str] = Form(None),
    quality: Optional[str] = Form(None),
    resolution: Optional[str] = Form(None),
    bitrate: Optional[str] = Form(None),
    resize: Optional[str] = Form(None),
    webhook_url: Optional[str] = Form(None),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """route to the right converter based on the file extension"""
    # options that do not apply to the detected type are dropped by its profile
    options = {
        "codec": codec,
        "quality": quality,
        "resolution": resolution,
        "bitrate": bitrate,
        "resize": resize,
    }
    return queue_conversion(orchestrator, file, target_format, webhook_url, options)
