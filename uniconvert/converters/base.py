import subprocess
from typing import Iterator, Protocol


class Converter(Protocol):
    """
    performs the actual format transformation for one media type

    convert() is a generator: it yields progress values (0-100, possibly
    out of order) while working and returns once the output file is written.
    failures are raised as ConversionError.
    """

    # tool name -> command that succeeds when the tool is installed
    required_tools: dict

    def convert(self, input_path: str, output_path: str, target_format: str, options: dict) -> Iterator[int]:
        ...


def check_tool(command: list, timeout: float = 10) -> bool:
    """True when the probe command runs and exits cleanly"""
    if not command:
        return True
    try:
        subprocess.run(command, capture_output=True, check=True, timeout=timeout)
        return True
    except (OSError, subprocess.SubprocessError):
        return False
