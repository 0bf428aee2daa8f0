import os
import shutil
import subprocess
from unittest.mock import MagicMock, patch

import pytest
from PIL import Image

from uniconvert.converters import check_tools, default_converters
from uniconvert.converters.audio import build_audio_args, normalize_bitrate
from uniconvert.converters.document import DocumentConverter, choose_tool
from uniconvert.converters.image import ImageConverter, resize_image
from uniconvert.converters.video import VideoConverter, build_video_args
from uniconvert.core.errors import ConversionError
from uniconvert.services.ffmpeg import parse_progress_line, run_ffmpeg

HAS_FFMPEG = shutil.which("ffmpeg") is not None and shutil.which("ffprobe") is not None


def test_video_args_mp4():
    args = build_video_args("mp4", {"codec": "h264", "quality": "high", "resolution": "720p"})
    assert args[:4] == ["-c:v", "libx264", "-preset", "fast"]
    assert ["-crf", "18"] == args[4:6]
    assert "scale=1280:-2" in args
    assert "+faststart" in args


def test_video_args_webm_forces_vp9():
    args = build_video_args("webm", {"codec": "h264", "quality": "medium"})
    assert args[:2] == ["-c:v", "libvpx-vp9"]
    assert ["-b:v", "0"] == args[args.index("-b:v"):args.index("-b:v") + 2]
    assert "libopus" in args


def test_video_args_copy_and_gif():
    assert build_video_args("mkv", {"codec": "copy"}) == ["-c:v", "copy", "-c:a", "copy"]
    gif = build_video_args("gif", {"resolution": "original"})
    assert gif == ["-an", "-vf", "fps=12,scale=480:-2"]


def test_audio_args():
    assert build_audio_args("mp3", {"bitrate": "320k"}) == ["-vn", "-c:a", "libmp3lame", "-b:a", "320k"]
    assert build_audio_args("flac", {"bitrate": "320k"}) == ["-vn", "-c:a", "flac"]
    assert normalize_bitrate("loud") == "192k"


@pytest.mark.parametrize("line,duration,expected", [
    ("out_time_us=5000000", 10.0, 50),
    ("out_time_ms=2500000", 10.0, 25),
    ("out_time_us=99000000", 10.0, 100),
    ("progress=end", 10.0, 100),
    ("progress=continue", 10.0, None),
    ("out_time_us=5000000", 0.0, None),
    ("out_time_us=N/A", 10.0, None),
    ("frame=42", 10.0, None),
])
def test_parse_progress_line(line, duration, expected):
    assert parse_progress_line(line, duration) == expected


def test_run_ffmpeg_kills_process_when_closed(tmp_path):
    process = MagicMock()
    process.stdout = iter(["out_time_us=1000000\n", "out_time_us=2000000\n"])
    process.poll.return_value = None

    with patch("uniconvert.services.ffmpeg.subprocess.Popen", return_value=process):
        updates = run_ffmpeg("in.mp4", str(tmp_path / "out.mp4"), [], 10.0)
        assert next(updates) == 10
        updates.close()

    process.kill.assert_called_once()


def test_run_ffmpeg_failure(tmp_path):
    process = MagicMock()
    process.stdout = iter([])
    process.wait.return_value = 1
    process.poll.return_value = 1

    with patch("uniconvert.services.ffmpeg.subprocess.Popen", return_value=process):
        with pytest.raises(ConversionError, match="code 1"):
            list(run_ffmpeg("in.mp4", str(tmp_path / "out.mp4"), [], 10.0))


@pytest.mark.parametrize("filename,target,expected", [
    ("report.docx", "pdf", "libreoffice"),
    ("sheet.xlsx", "pdf", "libreoffice"),
    ("notes.md", "pdf", "pandoc-pdf"),
    ("notes.md", "html", "pandoc"),
    ("page.html", "txt", "pandoc"),
    ("report.docx", "markdown", "pandoc"),
])
def test_choose_tool(filename, target, expected):
    assert choose_tool(filename, target) == expected


def test_choose_tool_unsupported():
    with pytest.raises(ConversionError):
        choose_tool("notes.md", "mp3")


def test_document_pdf_falls_back_to_libreoffice(tmp_path):
    calls = []

    def fake_run(cmd):
        calls.append(cmd[0])
        if cmd[0] == "pandoc" and "--pdf-engine=pdflatex" in cmd:
            raise ConversionError("pdflatex not found")
        if cmd[0] == "soffice":
            outdir = cmd[cmd.index("--outdir") + 1]
            with open(os.path.join(outdir, "intermediate.pdf"), "wb") as f:
                f.write(b"%PDF")

    output = tmp_path / "out.pdf"
    with patch("uniconvert.converters.document._run", side_effect=fake_run):
        progress = list(DocumentConverter().convert("notes.md", str(output), "pdf", {}))

    assert calls == ["pandoc", "pandoc", "soffice"]
    assert progress == [10, 30, 60]
    assert output.read_bytes() == b"%PDF"
    # scratch space is cleaned up
    assert os.listdir(tmp_path) == ["out.pdf"]


def test_image_resize_never_enlarges():
    img = Image.new("RGB", (400, 200))
    assert resize_image(img, {"width": 100}).size == (100, 50)
    assert resize_image(img, {"width": 800, "height": 800}).size == (400, 200)
    assert resize_image(img, {"width": 100, "height": 100, "fit": "cover"}).size == (100, 100)
    assert resize_image(img, {"width": 100, "height": 100, "fit": "fill"}).size == (100, 100)
    assert resize_image(img, {}).size == (400, 200)
    with pytest.raises(ConversionError):
        resize_image(img, {"width": 100, "fit": "stretch"})


def test_image_convert(tmp_path):
    source = tmp_path / "in.png"
    Image.new("RGBA", (64, 32), (255, 0, 0, 128)).save(source)
    output = tmp_path / "out.jpg"

    progress = list(ImageConverter().convert(
        str(source), str(output), "jpg", {"quality": 80, "resize": {"width": 32}}
    ))

    assert progress == [10, 30, 50]
    with Image.open(output) as result:
        assert result.format == "JPEG"
        assert result.size == (32, 16)


def test_image_convert_unreadable(tmp_path):
    source = tmp_path / "broken.png"
    source.write_bytes(b"not an image")
    with pytest.raises(ConversionError):
        list(ImageConverter().convert(str(source), str(tmp_path / "out.webp"), "webp", {}))


def test_check_tools():
    with patch("uniconvert.converters.base.subprocess.run", side_effect=FileNotFoundError):
        tools = check_tools(default_converters())
    assert tools == {"ffmpeg": False, "pandoc": False, "libreoffice": False, "pillow": True}


@pytest.mark.skipif(not HAS_FFMPEG, reason="ffmpeg not installed")
def test_video_convert_end_to_end(tmp_path):
    source = tmp_path / "in.mkv"
    subprocess.run(
        ["ffmpeg", "-y", "-f", "lavfi", "-i", "testsrc=duration=1:size=128x96:rate=10", str(source)],
        capture_output=True,
        check=True,
    )
    output = tmp_path / "out.mp4"

    progress = list(VideoConverter().convert(str(source), str(output), "mp4", {"codec": "h264", "quality": "low"}))

    assert progress[0] == 0
    assert progress[-1] == 100
    assert output.stat().st_size > 0
