from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Literal, Optional

import pydantic
from pydantic import BaseModel, ConfigDict, Field, create_model, field_validator

from .state import AllowedModels, ImageModel, ImageSize, ImageStyle, ModerationLevel, OutputFormat, Quality
from .tools.errors import ValidationError

_OUTPUT_PATH_HELP = (
    "Absolute path or directory where the output file should be saved. "
    "Defaults to the current working directory."
)


class _ImageArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    outputPath: Optional[str] = Field(None, description=_OUTPUT_PATH_HELP)
    model: ImageModel = Field(ImageModel.GPT_IMAGE_1, description="The model to use")
    size: ImageSize = Field(ImageSize.S1024, description="Size of the generated image")
    output_compression: int = Field(100, ge=0, le=100, description="The compression of the generated image")
    quality: Quality = Field(Quality.STANDARD, description="The quality of the generated image")
    n: int = Field(1, ge=1, le=10, description="The number of images to generate")

    @field_validator("n", "output_compression", mode="before")
    @classmethod
    def _reject_bool(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("expected integer, got boolean")
        return value


class TextToImageArgs(_ImageArgs):
    text: str = Field(description="The prompt to generate an image from")
    style: ImageStyle = Field(ImageStyle.VIVID, description="Style of the image (for dall-e-3)")
    output_format: OutputFormat = Field(OutputFormat.WEBP, description="The format of the generated image")
    moderation: ModerationLevel = Field(
        ModerationLevel.LOW, description="The moderation level of the generated image",
    )


class ImageToImageArgs(_ImageArgs):
    images: list[str] = Field(min_length=1, description="The images to edit. Must be an array of file paths.")
    prompt: str = Field(description="A text description of the desired image(s)")
    mask: Optional[str] = Field(
        None,
        description="Optional mask image whose transparent areas indicate where image should be "
                    "edited. Must be a file path.",
    )
    output_format: OutputFormat = Field(OutputFormat.PNG, description="The format of the generated image")


def restrict_models(
    base: type[_ImageArgs],
    allowed: AllowedModels,
    description: str = "The model to use",
) -> type[_ImageArgs]:
    """Subclass *base* so ``model`` only accepts the allow-listed ids."""
    names = tuple(allowed.names())
    return create_model(
        base.__name__,
        __base__=base,
        model=(Literal[names], Field(allowed.default.value, description=description)),
    )


@dataclass(frozen=True)
class ToolSchema:
    name: str
    description: str
    args_model: type[BaseModel]

    def input_schema(self) -> dict[str, Any]:
        raw = self.args_model.model_json_schema()
        defs = raw.get("$defs", {})
        return {
            "type": "object",
            "properties": {k: _inline(dict(v), defs) for k, v in raw.get("properties", {}).items()},
            "required": raw.get("required", []),
            "additionalProperties": False,
        }

    def describe(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "inputSchema": self.input_schema()}


def _inline(prop: dict[str, Any], defs: dict[str, Any]) -> dict[str, Any]:
    # MCP hosts expect flat per-property schemas: no $ref, no nullable anyOf.
    ref = prop.pop("$ref", None)
    if ref is None and len(prop.get("allOf", ())) == 1:
        ref = prop.pop("allOf")[0].get("$ref")
    if ref:
        prop = {**defs[ref.rsplit("/", 1)[-1]], **prop}
    variants = prop.pop("anyOf", None)
    if variants:
        concrete = [v for v in variants if v.get("type") != "null"]
        if len(concrete) == 1:
            prop.update(concrete[0])
        else:
            prop["anyOf"] = variants
    if "default" in prop and prop["default"] is None:
        del prop["default"]
    if "const" in prop:
        prop.setdefault("enum", [prop.pop("const")])
    prop.pop("title", None)
    return prop


def validate_tool_args(schema: ToolSchema, arguments: Any) -> dict[str, Any]:
    """Check *arguments* against *schema* and fill in defaults.

    Every offending field is collected before raising, so the caller sees
    the full list in one :class:`ValidationError`.
    """
    if arguments is None:
        arguments = {}
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments) if arguments.strip() else {}
        except json.JSONDecodeError as exc:
            raise ValidationError({"arguments": f"invalid JSON: {exc.msg}"}) from exc
    if not isinstance(arguments, dict):
        raise ValidationError({"arguments": "expected object payload"})

    # An explicit null means "use the default".
    present = {k: v for k, v in arguments.items() if v is not None}
    try:
        parsed = schema.args_model.model_validate(present)
    except pydantic.ValidationError as exc:
        raise ValidationError(_field_errors(exc)) from exc
    return parsed.model_dump(mode="json")


def _field_errors(exc: pydantic.ValidationError) -> dict[str, str]:
    errors: dict[str, str] = {}
    for err in exc.errors():
        name = str(err["loc"][0]) if err["loc"] else "arguments"
        if err["type"] == "missing":
            reason = "required"
        elif err["type"] == "extra_forbidden":
            reason = "unknown parameter"
        else:
            reason = err["msg"]
        errors.setdefault(name, reason)
    return errors
