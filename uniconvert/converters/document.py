import logging
import os
import shutil
import subprocess
import tempfile
from typing import Iterator

from uniconvert.core.errors import ConversionError
from uniconvert.core.media import MediaType

logger = logging.getLogger(__name__)

# target format -> pandoc writer
PANDOC_WRITERS = {
    "html": "html",
    "markdown": "markdown",
    "md": "markdown",
    "txt": "plain",
    "epub": "epub",
    "rst": "rst",
    "docx": "docx",
    "odt": "odt",
    "rtf": "rtf",
}

# inputs that need libreoffice to become a pdf
OFFICE_EXTENSIONS = {".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".odt", ".ods", ".odp"}


def _run(cmd: list):
    logger.info(f"running: {' '.join(cmd)}")
    try:
        subprocess.run(cmd, capture_output=True, text=True, check=True)
    except FileNotFoundError:
        raise ConversionError(f"{cmd[0]} is not installed")
    except subprocess.CalledProcessError as e:
        detail = (e.stderr or e.stdout or "").strip().splitlines()[-3:]
        raise ConversionError(f"{cmd[0]} exited with code {e.returncode}: {' '.join(detail)}")


def choose_tool(input_path: str, target_format: str) -> str:
    """
    pick the conversion route for a document
    returns: "libreoffice", "pandoc" or "pandoc-pdf"
    """
    target_format = target_format.lower()
    ext = os.path.splitext(input_path)[1].lower()
    if target_format == "pdf" and ext in OFFICE_EXTENSIONS:
        return "libreoffice"
    if target_format in PANDOC_WRITERS:
        return "pandoc"
    if target_format == "pdf":
        return "pandoc-pdf"
    raise ConversionError(f"unsupported target format: {target_format}")


class DocumentConverter:
    media_type = MediaType.DOCUMENT
    required_tools = {
        "pandoc": ["pandoc", "--version"],
        "libreoffice": ["soffice", "--version"],
    }

    def _soffice_to_pdf(self, input_path: str, output_path: str, work_dir: str):
        # a private profile per run, concurrent soffice instances share nothing
        profile = "file://" + os.path.abspath(os.path.join(work_dir, "profile"))
        _run([
            "soffice", f"-env:UserInstallation={profile}",
            "--headless", "--convert-to", "pdf",
            "--outdir", work_dir, input_path,
        ])
        produced = os.path.join(work_dir, os.path.splitext(os.path.basename(input_path))[0] + ".pdf")
        if not os.path.exists(produced):
            raise ConversionError("libreoffice did not produce a pdf")
        shutil.move(produced, output_path)

    def convert(self, input_path: str, output_path: str, target_format: str, options: dict) -> Iterator[int]:
        tool = choose_tool(input_path, target_format)
        yield 10

        work_dir = tempfile.mkdtemp(prefix="uniconvert_", dir=os.path.dirname(output_path) or None)
        try:
            yield 30
            if tool == "libreoffice":
                self._soffice_to_pdf(input_path, output_path, work_dir)
            elif tool == "pandoc":
                writer = PANDOC_WRITERS[target_format.lower()]
                _run(["pandoc", input_path, "-t", writer, "-o", output_path, "--standalone"])
            else:
                try:
                    _run(["pandoc", input_path, "-o", output_path, "--pdf-engine=pdflatex"])
                except ConversionError as e:
                    # no latex engine: go through odt and let libreoffice render the pdf
                    logger.info(f"pandoc pdf failed ({e}), falling back to libreoffice")
                    intermediate = os.path.join(work_dir, "intermediate.odt")
                    _run(["pandoc", input_path, "-o", intermediate])
                    yield 60
                    self._soffice_to_pdf(intermediate, output_path, work_dir)
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)
