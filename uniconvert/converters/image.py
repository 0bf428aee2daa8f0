from typing import Iterator

from PIL import Image, ImageOps

from uniconvert.core.errors import ConversionError
from uniconvert.core.media import MediaType

PIL_FORMATS = {
    "jpg": "JPEG",
    "jpeg": "JPEG",
    "png": "PNG",
    "webp": "WEBP",
    "avif": "AVIF",
    "gif": "GIF",
    "tiff": "TIFF",
}

FIT_MODES = {"inside", "contain", "cover", "fill", "outside"}


def _box(size: tuple, resize: dict) -> tuple:
    """target (width, height), deriving a missing side from the aspect ratio"""
    src_w, src_h = size
    try:
        width = int(resize["width"]) if resize.get("width") else None
        height = int(resize["height"]) if resize.get("height") else None
    except (TypeError, ValueError):
        raise ConversionError("resize width/height must be integers")
    if (width is not None and width <= 0) or (height is not None and height <= 0):
        raise ConversionError("resize width/height must be positive")
    if width is None:
        width = max(1, round(src_w * height / src_h))
    if height is None:
        height = max(1, round(src_h * width / src_w))
    return width, height


def resize_image(img: Image.Image, resize: dict) -> Image.Image:
    """resize within the requested box, never enlarging the source"""
    if not resize or not (resize.get("width") or resize.get("height")):
        return img
    fit = resize.get("fit") or "inside"
    if fit not in FIT_MODES:
        raise ConversionError(f"unsupported resize fit: {fit}")

    width, height = _box(img.size, resize)
    src_w, src_h = img.size

    if fit == "inside":
        img = img.copy()
        img.thumbnail((width, height), Image.Resampling.LANCZOS)
        return img
    if fit == "outside":
        ratio = max(width / src_w, height / src_h)
        if ratio >= 1:
            return img
        return img.resize((max(1, round(src_w * ratio)), max(1, round(src_h * ratio))), Image.Resampling.LANCZOS)

    width, height = min(width, src_w), min(height, src_h)
    if fit == "cover":
        return ImageOps.fit(img, (width, height), Image.Resampling.LANCZOS)
    if fit == "contain":
        return ImageOps.pad(img, (width, height), Image.Resampling.LANCZOS)
    return img.resize((width, height), Image.Resampling.LANCZOS)


def save_options(pil_format: str, quality: int) -> dict:
    if pil_format == "JPEG":
        return {"quality": quality, "optimize": True, "progressive": True}
    if pil_format == "PNG":
        return {"compress_level": max(0, min(9, 9 - quality // 12))}
    if pil_format in ("WEBP", "AVIF"):
        return {"quality": quality}
    if pil_format == "TIFF":
        return {"compression": "tiff_lzw"}
    return {}


class ImageConverter:
    media_type = MediaType.IMAGE
    required_tools = {"pillow": []}

    def convert(self, input_path: str, output_path: str, target_format: str, options: dict) -> Iterator[int]:
        pil_format = PIL_FORMATS.get(target_format.lower())
        if pil_format is None:
            raise ConversionError(f"unsupported target format: {target_format}")
        quality = int(options.get("quality") or 85)

        try:
            with Image.open(input_path) as source:
                # apply exif orientation; metadata is not carried over to the output
                img = ImageOps.exif_transpose(source)
                img.load()
            yield 10

            img = resize_image(img, options.get("resize") or {})
            yield 30

            if pil_format == "JPEG" and img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            yield 50

            img.save(output_path, format=pil_format, **save_options(pil_format, quality))
        except ConversionError:
            raise
        except (OSError, ValueError, KeyError, Image.DecompressionBombError) as e:
            raise ConversionError(f"image conversion failed: {e}") from e
