import re
from typing import Iterator

from uniconvert.core.media import MediaType
from uniconvert.services.ffmpeg import get_media_metadata, run_ffmpeg

AUDIO_CODECS = {
    "mp3": "libmp3lame",
    "aac": "aac",
    "m4a": "aac",
    "flac": "flac",
    "wav": "pcm_s16le",
    "ogg": "libvorbis",
    "opus": "libopus",
}

AUDIO_BITRATES = {"64k", "128k", "192k", "256k", "320k"}
LOSSLESS_FORMATS = {"flac", "wav"}


def normalize_bitrate(bitrate) -> str:
    bitrate = str(bitrate or "").lower()
    if bitrate in AUDIO_BITRATES or re.fullmatch(r"\d{2,3}k", bitrate):
        return bitrate
    return "192k"


def build_audio_args(target_format: str, options: dict) -> list:
    """ffmpeg output options for an audio conversion"""
    target_format = target_format.lower()
    args = ["-vn"]
    codec = AUDIO_CODECS.get(target_format)
    if codec:
        args += ["-c:a", codec]
    if target_format not in LOSSLESS_FORMATS:
        args += ["-b:a", normalize_bitrate(options.get("bitrate"))]
    return args


class AudioConverter:
    media_type = MediaType.AUDIO
    required_tools = {"ffmpeg": ["ffmpeg", "-version"]}

    def convert(self, input_path: str, output_path: str, target_format: str, options: dict) -> Iterator[int]:
        yield 0
        meta = get_media_metadata(input_path)
        yield from run_ffmpeg(
            input_path,
            output_path,
            build_audio_args(target_format, options),
            meta["duration_sec"],
        )
