"""
media type profiles

the four supported media categories are a closed set. each profile carries
the extensions that classify an upload into it, the output formats it can
produce and the conversion options it understands. everything that varies by
media type is looked up here instead of branching on the type elsewhere.
"""
import json
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from uniconvert.core.errors import ValidationError


class MediaType(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"
    IMAGE = "image"
    DOCUMENT = "document"

    @property
    def queue_name(self) -> str:
        return f"{self.value}-conversion"


@dataclass(frozen=True)
class MediaProfile:
    media_type: MediaType
    extensions: frozenset
    output_formats: tuple
    default_options: dict = field(default_factory=dict)

    def accepts_output(self, target_format: str) -> bool:
        return target_format.lower() in self.output_formats

    def clean_options(self, raw: Optional[dict]) -> dict:
        """keep known option keys (filling defaults), silently dropping the rest"""
        options = dict(self.default_options)
        for key, value in (raw or {}).items():
            if key not in self.default_options or value is None or value == "":
                continue
            options[key] = _coerce_option(self.media_type, key, value)
        return options


def _coerce_option(media_type: MediaType, key: str, value):
    if media_type is MediaType.IMAGE and key == "quality":
        try:
            quality = int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"quality must be an integer, got {value!r}")
        if not 1 <= quality <= 100:
            raise ValidationError("quality must be between 1 and 100")
        return quality
    if media_type is MediaType.IMAGE and key == "resize":
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                raise ValidationError("resize must be a JSON object")
        if not isinstance(value, dict):
            raise ValidationError("resize must be a JSON object")
        return {k: value[k] for k in ("width", "height", "fit") if value.get(k) is not None}
    return str(value)


PROFILES = {
    MediaType.VIDEO: MediaProfile(
        media_type=MediaType.VIDEO,
        extensions=frozenset({".mp4", ".mkv", ".avi", ".mov", ".webm", ".wmv", ".flv", ".m4v", ".3gp"}),
        output_formats=("mp4", "webm", "mkv", "avi", "mov", "gif"),
        default_options={"codec": "h264", "quality": "medium", "resolution": "original"},
    ),
    MediaType.AUDIO: MediaProfile(
        media_type=MediaType.AUDIO,
        extensions=frozenset({".mp3", ".wav", ".flac", ".aac", ".ogg", ".m4a", ".wma", ".opus"}),
        output_formats=("mp3", "wav", "flac", "aac", "ogg", "m4a", "opus"),
        default_options={"bitrate": "192k"},
    ),
    MediaType.IMAGE: MediaProfile(
        media_type=MediaType.IMAGE,
        extensions=frozenset({
            ".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp", ".tiff", ".tif", ".avif", ".ico",
        }),
        output_formats=("png", "jpg", "jpeg", "webp", "avif", "gif", "tiff"),
        default_options={"quality": 85, "resize": None},
    ),
    MediaType.DOCUMENT: MediaProfile(
        media_type=MediaType.DOCUMENT,
        extensions=frozenset({
            ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".odt", ".ods", ".odp",
            ".txt", ".md", ".markdown", ".html", ".htm", ".epub", ".rtf", ".rst",
        }),
        output_formats=("pdf", "docx", "html", "markdown", "txt", "epub", "odt"),
    ),
}


def get_profile(media_type) -> MediaProfile:
    return PROFILES[MediaType(media_type)]


def detect_media_type(filename: str) -> Optional[MediaType]:
    """classify a file by its extension; None when it fits no category"""
    ext = os.path.splitext(filename or "")[1].lower()
    for media_type, profile in PROFILES.items():
        if ext in profile.extensions:
            return media_type
    return None
