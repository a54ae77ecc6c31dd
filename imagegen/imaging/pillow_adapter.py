import io

from PIL import Image, UnidentifiedImageError

from imagegen.generation.exceptions import GenerationValidationError
from imagegen.imaging.base import BaseImageTranscoder, EncodedImage

_MIME_BY_FORMAT = {"PNG": "image/png", "JPEG": "image/jpeg", "WEBP": "image/webp", "GIF": "image/gif"}


class PillowTranscoder(BaseImageTranscoder):
    """Scales and re-encodes images with Pillow until they fit the upload ceiling."""

    SCALES: tuple[float, ...] = (1.0, 0.85, 0.7, 0.55, 0.4, 0.3)
    OPAQUE_CANDIDATES: tuple[tuple[str, int | None], ...] = (
        ("WEBP", 85),
        ("JPEG", 88),
        ("WEBP", 72),
        ("JPEG", 76),
        ("JPEG", 62),
        ("PNG", None),
    )
    ALPHA_CANDIDATES: tuple[tuple[str, int | None], ...] = (("WEBP", 90), ("PNG", None))
    ALPHA_SAMPLE_STEPS = 48

    def __init__(self, max_dimension: int = 2048) -> None:
        self._max_dimension = max_dimension

    def fit(self, data: bytes, mime_type: str, max_bytes: int) -> EncodedImage:
        image, source_format = self._decode(data)
        if len(data) <= max_bytes and max(image.size) <= self._max_dimension:
            # Unchanged bytes carry the mime type of their decoded format.
            detected = _MIME_BY_FORMAT.get(source_format or "", mime_type)
            return EncodedImage(data=data, mime_type=detected, width=image.width, height=image.height)

        image = self._scale_to_max_dimension(image)
        has_alpha = self.has_alpha(image)
        image = image.convert("RGBA" if has_alpha else "RGB")
        candidates = self.ALPHA_CANDIDATES if has_alpha else self.OPAQUE_CANDIDATES

        for scale in self.SCALES:
            scaled = image if scale == 1.0 else self._resize(image, scale)
            for fmt, quality in candidates:
                encoded = self._encode(scaled, fmt, quality)
                if len(encoded) <= max_bytes:
                    return EncodedImage(
                        data=encoded,
                        mime_type=_MIME_BY_FORMAT[fmt],
                        width=scaled.width,
                        height=scaled.height,
                    )
        raise GenerationValidationError(
            f"Input image is too large and could not be compressed under {max_bytes} bytes"
        )

    @classmethod
    def has_alpha(cls, image: Image.Image) -> bool:
        """Detect meaningful transparency by sampling a sparse grid of pixels."""
        if image.mode not in ("RGBA", "LA", "PA") and "transparency" not in image.info:
            return False
        alpha = image.convert("RGBA").getchannel("A")
        step_x = max(1, alpha.width // cls.ALPHA_SAMPLE_STEPS)
        step_y = max(1, alpha.height // cls.ALPHA_SAMPLE_STEPS)
        for y in range(0, alpha.height, step_y):
            for x in range(0, alpha.width, step_x):
                if alpha.getpixel((x, y)) < 255:
                    return True
        return False

    @staticmethod
    def _decode(data: bytes) -> tuple[Image.Image, str | None]:
        """Decode `data`; the copy drops `format`, so it is returned alongside."""
        try:
            with Image.open(io.BytesIO(data)) as img:
                img.load()
                return img.copy(), img.format
        except (UnidentifiedImageError, OSError) as exc:
            raise GenerationValidationError(f"Input image could not be decoded: {exc}") from exc

    def _scale_to_max_dimension(self, image: Image.Image) -> Image.Image:
        longest = max(image.size)
        if longest <= self._max_dimension:
            return image
        return self._resize(image, self._max_dimension / longest)

    @staticmethod
    def _resize(image: Image.Image, scale: float) -> Image.Image:
        size = (max(1, round(image.width * scale)), max(1, round(image.height * scale)))
        return image.resize(size, Image.Resampling.LANCZOS)

    @staticmethod
    def _encode(image: Image.Image, fmt: str, quality: int | None) -> bytes:
        buffer = io.BytesIO()
        if quality is None:
            image.save(buffer, format=fmt, optimize=True)
        else:
            image.save(buffer, format=fmt, quality=quality)
        return buffer.getvalue()
