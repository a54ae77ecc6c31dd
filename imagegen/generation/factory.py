from typing import ClassVar

from imagegen.config.settings import Settings
from imagegen.generation.client_base import BaseGenerationClient
from imagegen.generation.example_client_adapter import ExampleClientAdapter
from imagegen.generation.exceptions import ConfigurationError
from imagegen.generation.http_client_adapter import SystemSculptClientAdapter


class GenerationClientFactory:
    """Creates the configured generation client adapter."""

    PROVIDERS: ClassVar[tuple[str, ...]] = ("systemsculpt", "example")

    @classmethod
    def create(cls, settings: Settings) -> BaseGenerationClient:
        """Create a configured generation client from application settings.

        Raises:
            ConfigurationError: for an unknown provider or a missing license key.
        """
        provider = settings.generation_provider.strip().lower()
        if provider == "example":
            return ExampleClientAdapter()
        if provider == "systemsculpt":
            return SystemSculptClientAdapter(
                base_url=cls._resolve_base_url(settings),
                license_key=cls._resolve_license_key(settings),
                timeout_seconds=settings.request_timeout_seconds,
                requires_upload=settings.use_input_uploads,
            )
        raise ConfigurationError(
            f"Unknown generation provider '{provider}'. Choose from: {list(cls.PROVIDERS)}"
        )

    @classmethod
    def _resolve_base_url(cls, settings: Settings) -> str:
        url = settings.api_base_url.strip()
        if not url:
            raise ConfigurationError("api_base_url is required for generation_provider=systemsculpt")
        return url

    @classmethod
    def _resolve_license_key(cls, settings: Settings) -> str:
        key = settings.license_key.strip()
        if not key:
            raise ConfigurationError(
                "license_key is required for generation_provider=systemsculpt"
            )
        return key
