from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class EncodedImage:
    data: bytes
    mime_type: str
    width: int | None = None
    height: int | None = None


class BaseImageTranscoder(ABC):
    """Contract for in-process image transcoding adapters."""

    @abstractmethod
    def fit(self, data: bytes, mime_type: str, max_bytes: int) -> EncodedImage:
        """Re-encode an image so that it fits within `max_bytes`.

        Args:
            data: Raw encoded image bytes.
            mime_type: Claimed mime type of `data`.
            max_bytes: Upload ceiling for the returned bytes.

        Returns:
            An encoded image no larger than `max_bytes`.

        Raises:
            GenerationValidationError: if the image cannot be decoded or no
                encoding fits the ceiling.
        """
