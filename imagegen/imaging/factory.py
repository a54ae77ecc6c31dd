from imagegen.config.settings import Settings
from imagegen.generation.exceptions import ConfigurationError
from imagegen.imaging.base import BaseImageTranscoder
from imagegen.imaging.pillow_adapter import PillowTranscoder


class ImageTranscoderFactory:
    """Creates the image transcoder selected by settings; "none" disables transcoding."""

    ADAPTERS: dict[str, type[PillowTranscoder]] = {
        "pillow": PillowTranscoder,
    }

    @classmethod
    def create(cls, settings: Settings) -> BaseImageTranscoder | None:
        engine = settings.image_engine.strip().lower()
        if engine == "none":
            return None
        adapter_cls = cls.ADAPTERS.get(engine)
        if adapter_cls is None:
            raise ConfigurationError(
                f"Unknown image engine '{engine}'. Choose from: {[*cls.ADAPTERS, 'none']}"
            )
        return adapter_cls(max_dimension=settings.input_max_dimension)
