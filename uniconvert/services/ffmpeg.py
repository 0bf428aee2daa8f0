import subprocess
import json
import logging
import tempfile
from typing import Iterator

from uniconvert.core.errors import ConversionError

logger = logging.getLogger(__name__)


def get_media_metadata(file_path: str) -> dict:
    """
    Extracts metadata from a media file using ffprobe.
    Returns a dict with: duration_sec, has_video, has_audio, width, height
    """
    cmd = [
        "ffprobe",
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        file_path
    ]

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=True)
        data = json.loads(result.stdout)
    except FileNotFoundError:
        raise ConversionError("ffprobe is not installed")
    except (subprocess.CalledProcessError, json.JSONDecodeError) as e:
        raise ConversionError(f"could not read media file: {e}")

    streams = data.get("streams", [])
    video_stream = next((s for s in streams if s.get("codec_type") == "video"), None)
    audio_stream = next((s for s in streams if s.get("codec_type") == "audio"), None)

    try:
        duration_sec = float(data.get("format", {}).get("duration", 0) or 0)
    except ValueError:
        duration_sec = 0.0

    return {
        "duration_sec": duration_sec,
        "has_video": video_stream is not None,
        "has_audio": audio_stream is not None,
        "width": int(video_stream.get("width", 0)) if video_stream else 0,
        "height": int(video_stream.get("height", 0)) if video_stream else 0,
    }


def parse_progress_line(line: str, duration_sec: float):
    """turn one `-progress` key=value line into a percentage, or None"""
    key, _, value = line.strip().partition("=")
    if key == "progress" and value == "end":
        return 100
    if key not in ("out_time_us", "out_time_ms") or duration_sec <= 0:
        return None
    try:
        # both keys are reported in microseconds
        micros = int(value)
    except ValueError:
        return None
    return max(0, min(100, int(micros / 1_000_000 / duration_sec * 100)))


def run_ffmpeg(input_path: str, output_path: str, output_args: list, duration_sec: float) -> Iterator[int]:
    """
    run ffmpeg and yield progress percentages while it works

    closing the generator early (timeout, cancellation) kills the process.
    a non-zero exit raises ConversionError with the tail of ffmpeg's stderr.
    """
    cmd = [
        "ffmpeg", "-hide_banner", "-nostdin", "-y",
        "-i", input_path,
        *output_args,
        "-progress", "pipe:1", "-nostats",
        output_path,
    ]
    logger.info(f"running: {' '.join(cmd)}")

    with tempfile.TemporaryFile() as stderr_file:
        try:
            process = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=stderr_file, text=True)
        except FileNotFoundError:
            raise ConversionError("ffmpeg is not installed")

        try:
            for line in process.stdout:
                percent = parse_progress_line(line, duration_sec)
                if percent is not None:
                    yield percent
            returncode = process.wait()
        finally:
            if process.poll() is None:
                process.kill()
                process.wait()

        if returncode != 0:
            stderr_file.seek(0)
            tail = stderr_file.read().decode(errors="replace").strip().splitlines()[-3:]
            raise ConversionError(f"ffmpeg exited with code {returncode}: {' '.join(tail)}")
