from uniconvert.converters.audio import AudioConverter
from uniconvert.converters.base import Converter, check_tool
from uniconvert.converters.document import DocumentConverter
from uniconvert.converters.image import ImageConverter
from uniconvert.converters.video import VideoConverter
from uniconvert.core.media import MediaType


def default_converters() -> dict:
    """one converter per media type"""
    return {
        MediaType.VIDEO: VideoConverter(),
        MediaType.AUDIO: AudioConverter(),
        MediaType.IMAGE: ImageConverter(),
        MediaType.DOCUMENT: DocumentConverter(),
    }


def check_tools(converters: dict) -> dict:
    """availability of every external tool the converters rely on"""
    commands = {}
    for converter in converters.values():
        commands.update(converter.required_tools)
    return {name: check_tool(command) for name, command in commands.items()}


__all__ = [
    "AudioConverter",
    "Converter",
    "DocumentConverter",
    "ImageConverter",
    "VideoConverter",
    "check_tools",
    "default_converters",
]
