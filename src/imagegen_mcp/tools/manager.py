from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..config import AppConfig, validate_models
from ..sanitizer import sanitize_prompt
from ..state import (
    AllowedModels,
    ClientState,
    Configured,
    EditRequest,
    GeneratedImage,
    GenerationRequest,
    ImageModel,
    ImageSize,
    ImageStyle,
    ModerationLevel,
    OutputFormat,
    Quality,
    Unconfigured,
    effective_format,
)
from ..tool_args import (
    ImageToImageArgs,
    TextToImageArgs,
    ToolSchema,
    restrict_models,
    validate_tool_args,
)
from .artifacts import ArtifactWriter
from .errors import (
    ConfigurationError,
    EmptyResultError,
    ImageToolError,
    InputFileNotFoundError,
    RemoteApiError,
    UnknownToolError,
)
from .openai_images import OpenAIImageClient

log = logging.getLogger("imagegen-mcp")


class ToolName(str, Enum):
    TEXT_TO_IMAGE = "text-to-image"
    IMAGE_TO_IMAGE = "image-to-image"


_ERROR_PREFIX = {
    ToolName.TEXT_TO_IMAGE: "Error generating image",
    ToolName.IMAGE_TO_IMAGE: "Error editing image",
}


@dataclass(frozen=True, slots=True)
class ToolResult:
    text: str
    is_error: bool = False

    def content(self) -> list[dict[str, Any]]:
        return [{"type": "text", "text": self.text}]


# ---------------------------------------------------------------------------
# Tool schema registry
# ---------------------------------------------------------------------------

def tool_schemas(allowed: AllowedModels) -> list[ToolSchema]:
    return [
        ToolSchema(
            name=ToolName.TEXT_TO_IMAGE.value,
            description="Generate one or more images from a text prompt and save them to disk.",
            args_model=restrict_models(TextToImageArgs, allowed),
        ),
        ToolSchema(
            name=ToolName.IMAGE_TO_IMAGE.value,
            description="Edit one or more existing images guided by a text prompt and save the results to disk.",
            args_model=restrict_models(
                ImageToImageArgs, allowed,
                "The model to use. Only gpt-image-1 and dall-e-2 are supported.",
            ),
        ),
    ]


def build_state(cfg: AppConfig, client: OpenAIImageClient | None = None) -> ClientState:
    """Resolve the allow-list and, when a credential is present, the client."""
    unknown = validate_models(cfg)
    if unknown:
        known = ", ".join(m.value for m in ImageModel)
        raise ConfigurationError(f"Unknown model(s) in allow-list: {', '.join(unknown)} (known: {known})")
    allowed = AllowedModels.from_names(cfg.models)
    if client is None and not cfg.has_credential:
        return Unconfigured(allowed=allowed)
    if client is None:
        client = OpenAIImageClient(
            cfg.api_key,
            base_url=cfg.base_url,
            timeout=cfg.timeout,
            organization=cfg.organization,
        )
    return Configured(allowed=allowed, client=client)


class ToolManager:
    def __init__(
        self,
        state: ClientState,
        writer: ArtifactWriter | None = None,
        *,
        max_prompt_length: int = 32000,
        blocked_terms: tuple[str, ...] | list[str] = (),
    ) -> None:
        self.state = state
        self.writer = writer or ArtifactWriter()
        self.max_prompt_length = max_prompt_length
        self.blocked_terms = tuple(blocked_terms)
        self._schemas = {s.name: s for s in tool_schemas(state.allowed)}
        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[ToolResult]]] = {
            ToolName.TEXT_TO_IMAGE.value: self.run_text_to_image,
            ToolName.IMAGE_TO_IMAGE.value: self.run_image_to_image,
        }

    @classmethod
    def from_config(cls, cfg: AppConfig) -> "ToolManager":
        return cls(
            build_state(cfg),
            ArtifactWriter(overwrite=cfg.overwrite),
            max_prompt_length=cfg.max_prompt_length,
            blocked_terms=cfg.blocked_terms,
        )

    @property
    def configured(self) -> bool:
        return isinstance(self.state, Configured)

    # ------------------------------------------------------------------
    # Registry / dispatch
    # ------------------------------------------------------------------

    def tool_definitions(self) -> list[dict[str, Any]]:
        return [schema.describe() for schema in self._schemas.values()]

    def validate(self, name: str, arguments: Any) -> dict[str, Any]:
        schema = self._schemas.get(name)
        if schema is None:
            raise UnknownToolError(f"Unknown tool: {name}")
        return validate_tool_args(schema, arguments)

    async def dispatch(self, name: str, arguments: Any) -> ToolResult:
        """Validate then run; ``UnknownToolError``/``ValidationError`` propagate."""
        return await self.dispatch_validated(name, self.validate(name, arguments))

    async def dispatch_validated(self, name: str, params: dict[str, Any]) -> ToolResult:
        handler = self._handlers.get(name)
        if handler is None:
            raise UnknownToolError(f"Unknown tool: {name}")
        return await handler(params)

    # ------------------------------------------------------------------
    # Shared pipeline steps
    # ------------------------------------------------------------------

    def _require_client(self) -> OpenAIImageClient:
        state = self.state
        if isinstance(state, Configured):
            return state.client
        raise ConfigurationError(state.reason)

    def _sanitize(self, prompt: Any, model: ImageModel) -> str:
        limit = min(self.max_prompt_length, model.max_prompt_length)
        return sanitize_prompt(prompt, max_length=limit, blocked_terms=self.blocked_terms)

    async def _save_all(
        self,
        client: OpenAIImageClient,
        images: list[GeneratedImage],
        fmt: OutputFormat,
        output_path: str | None,
    ) -> list[str]:
        if not images:
            raise EmptyResultError("No images were generated")
        # Number the files only when several land on one exact path.
        numbered = len(images) > 1
        saved: list[str] = []
        for i, image in enumerate(images):
            index = i if numbered else None
            if image.b64_json:
                path = await self.writer.save(image.b64_json, fmt, output_path, index=index)
            elif image.url:
                data = await client.download(image.url)
                path = await self.writer.write_bytes(data, fmt, output_path, index=index)
            else:
                raise RemoteApiError(f"Image data not found in response at index {i}")
            saved.append(path)
        return saved

    @staticmethod
    def _result_text(paths: list[str]) -> str:
        return paths[0] if len(paths) == 1 else "\n".join(paths)

    def _failure(self, tool: ToolName, exc: BaseException) -> ToolResult:
        prefix = _ERROR_PREFIX[tool]
        if isinstance(exc, ImageToolError):
            log.error("%s: %s", prefix, exc)
        else:
            log.exception("%s", prefix, exc_info=exc)
        return ToolResult(f"{prefix}: {exc}", is_error=True)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def run_text_to_image(self, params: dict[str, Any]) -> ToolResult:
        try:
            model = ImageModel(params["model"])
            prompt = self._sanitize(params["text"], model)
            client = self._require_client()
            req = GenerationRequest(
                prompt=prompt,
                model=model,
                size=ImageSize(params["size"]),
                style=ImageStyle(params["style"]) if params.get("style") else None,
                output_format=OutputFormat(params["output_format"]),
                output_compression=int(params["output_compression"]),
                moderation=ModerationLevel(params["moderation"]),
                quality=Quality(params["quality"]),
                n=int(params["n"]),
            )
            images = await client.generate(req)
            fmt = effective_format(model, req.output_format)
            paths = await self._save_all(client, images, fmt, params.get("outputPath"))
            return ToolResult(self._result_text(paths))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            return self._failure(ToolName.TEXT_TO_IMAGE, exc)

    async def run_image_to_image(self, params: dict[str, Any]) -> ToolResult:
        try:
            model = ImageModel(params["model"])
            prompt = self._sanitize(params["prompt"], model)
            client = self._require_client()
            images_in = list(params["images"])
            for path in images_in:
                await _require_file(path, "Input image")
            mask = params.get("mask") or None
            if mask:
                await _require_file(mask, "Mask image")
            req = EditRequest(
                images=images_in,
                prompt=prompt,
                mask=mask,
                model=model,
                size=ImageSize(params["size"]),
                output_format=OutputFormat(params["output_format"]),
                output_compression=int(params["output_compression"]),
                quality=Quality(params["quality"]),
                n=int(params["n"]),
            )
            images = await client.edit(req)
            fmt = effective_format(model, req.output_format)
            paths = await self._save_all(client, images, fmt, params.get("outputPath"))
            return ToolResult(self._result_text(paths))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            return self._failure(ToolName.IMAGE_TO_IMAGE, exc)


async def _require_file(path: str, label: str) -> None:
    if not await asyncio.to_thread(os.path.isfile, path):
        raise InputFileNotFoundError(f"{label} not found: {path}", path)
