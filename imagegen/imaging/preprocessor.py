import asyncio
import hashlib

from imagegen.generation.exceptions import GenerationValidationError
from imagegen.generation.models import SUPPORTED_INPUT_MIME_TYPES, PreparedInputImage
from imagegen.imaging.base import BaseImageTranscoder
from imagegen.logging.logger import Log

_MIME_BY_EXTENSION = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "gif": "image/gif",
}


def mime_type_from_extension(extension: str) -> str | None:
    return _MIME_BY_EXTENSION.get(extension.lower().lstrip("."))


class InputImagePreprocessor:
    """Turns raw input images into upload-ready PreparedInputImage values."""

    def __init__(self, transcoder: BaseImageTranscoder | None, max_bytes: int) -> None:
        self._transcoder = transcoder
        self._max_bytes = max_bytes

    async def prepare(self, data: bytes, mime_type: str, source: str = "") -> PreparedInputImage:
        """Validate and, when needed, compress one image under the upload ceiling.

        Raises:
            GenerationValidationError: for an unsupported mime type, or when the
                image cannot be brought under the ceiling.
        """
        mime = mime_type.split(";", 1)[0].strip().lower()
        if mime == "image/jpg":
            mime = "image/jpeg"
        if mime not in SUPPORTED_INPUT_MIME_TYPES:
            raise GenerationValidationError(
                f"Unsupported input image type '{mime_type}'. "
                f"Supported: {sorted(SUPPORTED_INPUT_MIME_TYPES)}"
            )

        if self._transcoder is None:
            if len(data) > self._max_bytes:
                raise GenerationValidationError(
                    f"Input image is too large ({len(data)} bytes > {self._max_bytes}) "
                    "and cannot be compressed without an image engine"
                )
            return self._build(data, mime, source)

        encoded = await asyncio.to_thread(self._transcoder.fit, data, mime, self._max_bytes)
        if len(encoded.data) > self._max_bytes:
            raise GenerationValidationError(
                f"Input image could not be compressed under {self._max_bytes} bytes"
            )
        if encoded.data is not data:
            Log.info(
                f"Compressed input image {source or '<bytes>'} from {len(data)} to "
                f"{len(encoded.data)} bytes ({encoded.mime_type})"
            )
        return self._build(encoded.data, encoded.mime_type, source)

    @staticmethod
    def _build(data: bytes, mime_type: str, source: str) -> PreparedInputImage:
        return PreparedInputImage(
            data=data,
            mime_type=mime_type,
            size_bytes=len(data),
            sha256=hashlib.sha256(data).hexdigest(),
            source=source,
        )
