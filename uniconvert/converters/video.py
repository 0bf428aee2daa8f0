from typing import Iterator

from uniconvert.core.media import MediaType
from uniconvert.services.ffmpeg import get_media_metadata, run_ffmpeg

VIDEO_PRESETS = {
    "h264": {"codec": "libx264", "preset": "fast"},
    "h265": {"codec": "libx265", "preset": "medium"},
    "hevc": {"codec": "libx265", "preset": "medium"},
    "vp9": {"codec": "libvpx-vp9"},
    "av1": {"codec": "libaom-av1"},
    "copy": {"codec": "copy"},
}

QUALITY_PRESETS = {
    "low": 28,
    "medium": 23,
    "high": 18,
    "lossless": 0,
}

RESOLUTION_PRESETS = {
    "480p": 854,
    "720p": 1280,
    "1080p": 1920,
    "1440p": 2560,
    "4k": 3840,
}

# webm only carries vp8/vp9/av1 video
WEBM_CODECS = {"vp9", "av1"}
# these encoders need an unconstrained bitrate for crf to mean constant quality
CRF_NEEDS_ZERO_BITRATE = {"libvpx-vp9", "libaom-av1"}


def _scale_filter(resolution: str):
    width = RESOLUTION_PRESETS.get((resolution or "").lower())
    return f"scale={width}:-2" if width else None


def build_video_args(target_format: str, options: dict) -> list:
    """ffmpeg output options for a video conversion"""
    target_format = target_format.lower()
    scale = _scale_filter(options.get("resolution", "original"))

    if target_format == "gif":
        filters = ["fps=12", scale or "scale=480:-2"]
        return ["-an", "-vf", ",".join(filters)]

    codec = (options.get("codec") or "h264").lower()
    if codec not in VIDEO_PRESETS:
        codec = "h264"
    if target_format == "webm" and codec not in WEBM_CODECS:
        codec = "vp9"
    preset = VIDEO_PRESETS[codec]

    args = ["-c:v", preset["codec"]]
    if codec == "copy":
        return args + ["-c:a", "copy"]

    if preset.get("preset"):
        args += ["-preset", preset["preset"]]
    crf = QUALITY_PRESETS.get(options.get("quality", "medium"), QUALITY_PRESETS["medium"])
    args += ["-crf", str(crf)]
    if preset["codec"] in CRF_NEEDS_ZERO_BITRATE:
        args += ["-b:v", "0"]
    if scale:
        args += ["-vf", scale]
    if target_format == "webm":
        args += ["-c:a", "libopus"]
    if target_format in ("mp4", "mov"):
        args += ["-pix_fmt", "yuv420p", "-movflags", "+faststart"]
    return args


class VideoConverter:
    media_type = MediaType.VIDEO
    required_tools = {"ffmpeg": ["ffmpeg", "-version"]}

    def convert(self, input_path: str, output_path: str, target_format: str, options: dict) -> Iterator[int]:
        yield 0
        meta = get_media_metadata(input_path)
        yield from run_ffmpeg(
            input_path,
            output_path,
            build_video_args(target_format, options),
            meta["duration_sec"],
        )
