import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from typing import Any

COMMON_ASPECT_RATIOS: tuple[str, ...] = ("16:9", "1:1", "9:16", "4:3", "3:4", "3:2", "2:3")
EXCLUDED_MODEL_IDS = frozenset({"openrouter/auto"})


@dataclass(frozen=True)
class CatalogModel:
    """Image generation model known to the catalog."""

    id: str
    label: str
    provider: str
    supports_image_input: bool = False
    max_images_per_job: int = 1
    default_aspect_ratio: str = "1:1"
    allowed_aspect_ratios: tuple[str, ...] = COMMON_ASPECT_RATIOS


CURATED_MODELS: tuple[CatalogModel, ...] = (
    CatalogModel(
        id="openai/gpt-5-image-mini",
        label="OpenAI GPT-5 Image Mini",
        provider="OpenAI",
        supports_image_input=True,
        max_images_per_job=4,
        allowed_aspect_ratios=("1:1", "4:3", "3:4", "16:9", "9:16", "3:2", "2:3"),
    ),
    CatalogModel(
        id="openai/gpt-5-image",
        label="OpenAI GPT-5 Image",
        provider="OpenAI",
        supports_image_input=True,
        max_images_per_job=4,
        allowed_aspect_ratios=("1:1", "4:3", "3:4", "16:9", "9:16", "3:2", "2:3"),
    ),
    CatalogModel(
        id="google/gemini-2.5-flash-image",
        label="Google Gemini 2.5 Flash Image",
        provider="Google",
        supports_image_input=True,
        max_images_per_job=4,
        allowed_aspect_ratios=("1:1", "4:3", "3:4", "16:9", "9:16", "3:2", "2:3"),
    ),
)


class ModelCatalog:
    """Immutable lookup of image generation models.

    Built from the curated seed list and optionally merged with the models
    reported by the server; merging returns a new catalog.
    """

    def __init__(self, models: Iterable[CatalogModel] = CURATED_MODELS) -> None:
        self._models: tuple[CatalogModel, ...] = tuple(models)
        self._by_id: dict[str, CatalogModel] = {model.id: model for model in self._models}

    @property
    def models(self) -> tuple[CatalogModel, ...]:
        return self._models

    def get(self, model_id: str) -> CatalogModel | None:
        return self._by_id.get(model_id.strip())

    def max_images_per_job(self, model_id: str) -> int:
        model = self.get(model_id)
        return model.max_images_per_job if model is not None else 1

    def supports_image_input(self, model_id: str) -> bool:
        model = self.get(model_id)
        return model.supports_image_input if model is not None else False

    def display_label(self, model_id: str) -> str:
        model = self.get(model_id)
        if model is not None:
            return model.label
        return model_id.strip() or "Image generation"

    def file_base_name(self, model_id: str) -> str:
        model = self.get(model_id)
        if model is not None:
            return model.label
        return re.sub(r"[\\/]+", "-", model_id.strip()) or "generation"

    def with_server_models(self, raw_models: Iterable[Mapping[str, Any]]) -> "ModelCatalog":
        """Merge server catalog entries into a new catalog.

        Server fields override the seed where present; server-only models are
        appended sorted by label.
        """
        server = {entry.model.id: entry for entry in _normalize_server_models(raw_models)}
        merged = [_merge(model, server.get(model.id)) for model in self._models]
        known = {model.id for model in merged}
        extra = sorted(
            (entry.model for model_id, entry in server.items() if model_id not in known),
            key=lambda model: model.label.lower(),
        )
        return ModelCatalog([*merged, *extra])


@dataclass(frozen=True)
class _ServerEntry:
    """Normalized server model plus the values the server actually reported."""

    model: CatalogModel
    reported_max_images_per_job: int | None
    reported_default_aspect_ratio: str | None


def _merge(seed: CatalogModel, server: _ServerEntry | None) -> CatalogModel:
    if server is None:
        return seed
    model = server.model
    allowed = _dedupe([*model.allowed_aspect_ratios, *seed.allowed_aspect_ratios])
    reported_default = server.reported_default_aspect_ratio
    default = reported_default if reported_default in allowed else seed.default_aspect_ratio
    return replace(
        seed,
        provider=model.provider or seed.provider,
        supports_image_input=seed.supports_image_input or model.supports_image_input,
        max_images_per_job=server.reported_max_images_per_job or seed.max_images_per_job,
        default_aspect_ratio=default,
        allowed_aspect_ratios=allowed,
    )


def _normalize_server_models(raw_models: Iterable[Mapping[str, Any]]) -> list[_ServerEntry]:
    entries: list[_ServerEntry] = []
    for raw in raw_models:
        if not isinstance(raw, Mapping):
            continue
        model_id = str(raw.get("id") or "").strip()
        if not model_id or model_id.lower() in EXCLUDED_MODEL_IDS:
            continue
        allowed = _dedupe(
            str(value).strip() for value in raw.get("allowed_aspect_ratios") or COMMON_ASPECT_RATIOS
        ) or COMMON_ASPECT_RATIOS
        reported_default = str(raw.get("default_aspect_ratio") or "").strip() or None
        reported_max = _positive_int(raw.get("max_images_per_job"))
        model = CatalogModel(
            id=model_id,
            label=str(raw.get("name") or "").strip() or model_id,
            provider=str(raw.get("provider") or "").strip(),
            supports_image_input=_supports_image_input(raw),
            max_images_per_job=reported_max or 1,
            default_aspect_ratio=reported_default or allowed[0],
            allowed_aspect_ratios=allowed,
        )
        entries.append(
            _ServerEntry(
                model=model,
                reported_max_images_per_job=reported_max,
                reported_default_aspect_ratio=reported_default,
            )
        )
    return entries


def _supports_image_input(raw: Mapping[str, Any]) -> bool:
    flag = raw.get("supports_image_input")
    if isinstance(flag, bool):
        return flag
    modalities = raw.get("input_modalities") or []
    return any(str(value).strip().lower() == "image" for value in modalities)


def _positive_int(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return max(1, int(value))


def _dedupe(values: Iterable[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for value in values:
        if value and value not in seen:
            seen[value] = None
    return tuple(seen)
