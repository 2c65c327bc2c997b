from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from .tools.openai_images import OpenAIImageClient


class ImageModel(str, Enum):
    GPT_IMAGE_1 = "gpt-image-1"
    DALL_E_2 = "dall-e-2"
    DALL_E_3 = "dall-e-3"

    @property
    def supports_edit(self) -> bool:
        return self in (ImageModel.GPT_IMAGE_1, ImageModel.DALL_E_2)

    @property
    def max_prompt_length(self) -> int:
        if self is ImageModel.DALL_E_2:
            return 1000
        if self is ImageModel.DALL_E_3:
            return 4000
        return 32000

    @property
    def sizes(self) -> frozenset["ImageSize"]:
        if self is ImageModel.DALL_E_2:
            return frozenset({ImageSize.S256, ImageSize.S512, ImageSize.S1024})
        if self is ImageModel.DALL_E_3:
            return frozenset({ImageSize.S1024, ImageSize.S1792_LANDSCAPE, ImageSize.S1792_PORTRAIT})
        return frozenset({
            ImageSize.S1024, ImageSize.S1536_LANDSCAPE, ImageSize.S1536_PORTRAIT, ImageSize.AUTO,
        })


class ImageSize(str, Enum):
    S256 = "256x256"
    S512 = "512x512"
    S1024 = "1024x1024"
    S1536_LANDSCAPE = "1536x1024"
    S1536_PORTRAIT = "1024x1536"
    S1792_LANDSCAPE = "1792x1024"
    S1792_PORTRAIT = "1024x1792"
    AUTO = "auto"


class ImageStyle(str, Enum):
    VIVID = "vivid"
    NATURAL = "natural"


class OutputFormat(str, Enum):
    PNG = "png"
    JPEG = "jpeg"
    WEBP = "webp"

    @property
    def extension(self) -> str:
        if self is OutputFormat.JPEG:
            return ".jpg"
        return f".{self.value}"


class ModerationLevel(str, Enum):
    LOW = "low"
    AUTO = "auto"


class Quality(str, Enum):
    STANDARD = "standard"
    HD = "hd"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    AUTO = "auto"

    def for_model(self, model: ImageModel) -> str | None:
        """Translate to the quality value *model* accepts (``None`` = omit)."""
        if model is ImageModel.GPT_IMAGE_1:
            if self is Quality.STANDARD:
                return Quality.AUTO.value
            if self is Quality.HD:
                return Quality.HIGH.value
            return self.value
        if model is ImageModel.DALL_E_3:
            if self in (Quality.HD, Quality.HIGH):
                return Quality.HD.value
            return Quality.STANDARD.value
        return None


class ResponseFormat(str, Enum):
    URL = "url"
    B64_JSON = "b64_json"


@dataclass(frozen=True, slots=True)
class AllowedModels:
    """Models this process may use, fixed at startup."""

    models: tuple[ImageModel, ...]
    default: ImageModel

    @classmethod
    def from_names(cls, names: list[str] | tuple[str, ...] | None) -> "AllowedModels":
        """Build the allow-list; empty means every known model.

        Raises ``ValueError`` for an identifier that is not a known model.
        """
        if not names:
            models = tuple(ImageModel)
            return cls(models=models, default=models[0])
        picked: list[ImageModel] = []
        for name in names:
            model = ImageModel(str(name).strip())
            if model not in picked:
                picked.append(model)
        return cls(models=tuple(picked), default=picked[0])

    def __contains__(self, model: object) -> bool:
        return model in self.models

    def names(self) -> list[str]:
        return [m.value for m in self.models]


@dataclass(slots=True)
class GenerationRequest:
    prompt: str
    model: ImageModel = ImageModel.GPT_IMAGE_1
    size: ImageSize = ImageSize.S1024
    style: ImageStyle | None = ImageStyle.VIVID
    output_format: OutputFormat = OutputFormat.WEBP
    output_compression: int = 100
    moderation: ModerationLevel = ModerationLevel.LOW
    quality: Quality = Quality.STANDARD
    n: int = 1


@dataclass(slots=True)
class EditRequest:
    images: list[str]
    prompt: str
    mask: str | None = None
    model: ImageModel = ImageModel.GPT_IMAGE_1
    size: ImageSize = ImageSize.S1024
    output_format: OutputFormat = OutputFormat.PNG
    output_compression: int = 100
    quality: Quality = Quality.STANDARD
    n: int = 1


@dataclass(frozen=True, slots=True)
class GeneratedImage:
    b64_json: str | None = None
    url: str | None = None
    revised_prompt: str | None = None


def effective_format(model: ImageModel, requested: OutputFormat) -> OutputFormat:
    # dall-e models only ever return PNG data.
    if model is ImageModel.GPT_IMAGE_1:
        return requested
    return OutputFormat.PNG


# ---------------------------------------------------------------------------
# Client state: discovery-only until a credential is configured
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Unconfigured:
    allowed: AllowedModels
    reason: str = "OpenAI API key is required. Please set the OPENAI_API_KEY environment variable."


@dataclass(frozen=True, slots=True)
class Configured:
    allowed: AllowedModels
    client: "OpenAIImageClient" = field(repr=False)


ClientState = Union[Unconfigured, Configured]
