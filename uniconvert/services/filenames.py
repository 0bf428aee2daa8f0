import os
import re
import uuid


def slugify(text: str) -> str:
    """reduce text to characters that are safe in a filename"""
    text = text.strip()
    text = re.sub(r'[^A-Za-z0-9._-]+', '_', text).strip('._')
    return text[:80] or "file"  # limit length


def output_filename(job_id: str, original_filename: str, target_format: str) -> str:
    """
    generates a filename: <job id>_<original stem>.<target format>
    example: 3f2a..._holiday_clip.mp4

    the name depends only on the job, so a retried attempt overwrites the
    output of an earlier one instead of leaving a second file behind
    """
    stem = os.path.splitext(os.path.basename(original_filename or ""))[0]
    return f"{job_id}_{slugify(stem)}.{target_format.lower()}"


def upload_filename(original_filename: str) -> str:
    """random stored name for an upload, keeping the original extension"""
    ext = os.path.splitext(original_filename or "")[1].lower()
    return f"{uuid.uuid4()}{ext}"
