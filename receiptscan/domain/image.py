"""Image buffers passed between preprocessing and OCR."""

from dataclasses import dataclass

SUPPORTED_MIME_TYPES = ("image/jpeg", "image/png", "image/webp")

# Pillow format name -> MIME type
PIL_FORMAT_MIME_TYPES = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
}


@dataclass(frozen=True)
class RawImage:
    """Caller-owned image bytes with their declared MIME type."""

    data: bytes
    mime_type: str

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class ProcessedImage:
    """OCR-ready image produced by the preprocessing pipeline."""

    data: bytes
    mime_type: str
    width: int
    height: int
    original_width: int
    original_height: int
    preset: str
    applied: tuple[str, ...] = ()
    # Steps that were requested but are not implemented (reported, not fatal)
    unsupported: tuple[str, ...] = ()
