"""OpenAIImageClient — async adapter for the OpenAI Images API.

Wraps ``/images/generations`` (JSON body) and ``/images/edits`` (multipart
body).  Every public call performs exactly one outbound request; there is no
retry loop here.  Upstream failures are raised as :class:`RemoteApiError`
carrying the service's own message so callers can show it verbatim.

Parameters the chosen model does not understand are left out of the request
(``style`` is dall-e-3 only, ``output_format``/``moderation`` are
gpt-image-1 only, and so on), and combinations the model rejects outright
raise :class:`UnsupportedOperationError` before anything is sent.
"""
from __future__ import annotations

import asyncio
import logging
import mimetypes
import os
from typing import Any

import httpx

from ..state import (
    EditRequest,
    GeneratedImage,
    GenerationRequest,
    ImageModel,
    ImageSize,
    OutputFormat,
    ResponseFormat,
)
from .errors import (
    EmptyResultError,
    RemoteApiError,
    UnsupportedOperationError,
    is_retryable_status,
)

log = logging.getLogger("imagegen-mcp.openai")


class OpenAIImageClient:
    """Async client for the OpenAI Images endpoints.

    Parameters
    ----------
    api_key:
        Bearer credential.  Held on the instance only; never logged.
    base_url:
        API root, e.g. ``https://api.openai.com/v1``.
    timeout:
        Seconds allowed for one request (connect, read and write each).
    transport:
        Optional ``httpx`` transport, used by tests to stub the service.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 120.0,
        organization: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = httpx.Timeout(timeout, connect=min(timeout, 15.0))
        self.organization = organization
        self._transport = transport

    def __repr__(self) -> str:
        return f"OpenAIImageClient(base_url={self.base_url!r}, api_key='***')"

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self._api_key}"}
        if self.organization:
            headers["OpenAI-Organization"] = self.organization
        return headers

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(
                    method, f"{self.base_url}{path}", headers=self._headers(), **kwargs,
                )
        except httpx.TimeoutException as exc:
            raise RemoteApiError(f"Request to {path} timed out", retryable=True) from exc
        except httpx.HTTPError as exc:
            raise RemoteApiError(f"Network error on {path}: {exc}", retryable=True) from exc
        if response.is_error:
            raise _api_error(response)
        try:
            payload = response.json()
        except ValueError as exc:
            raise RemoteApiError(
                f"Malformed response from {path}", status_code=response.status_code,
            ) from exc
        if not isinstance(payload, dict):
            raise RemoteApiError(f"Malformed response from {path}", status_code=response.status_code)
        return payload

    @staticmethod
    def _images(payload: dict) -> list[GeneratedImage]:
        data = payload.get("data") or []
        if not isinstance(data, list) or not data:
            raise EmptyResultError("No images were generated")
        images: list[GeneratedImage] = []
        for item in data:
            item = item if isinstance(item, dict) else {}
            images.append(GeneratedImage(
                b64_json=item.get("b64_json") or None,
                url=item.get("url") or None,
                revised_prompt=item.get("revised_prompt") or None,
            ))
        return images

    @staticmethod
    def _check_size(model: ImageModel, size: ImageSize) -> None:
        if size not in model.sizes:
            allowed = ", ".join(sorted(s.value for s in model.sizes))
            raise UnsupportedOperationError(
                f"Size {size.value} is not supported by {model.value} (supported: {allowed})"
            )

    @staticmethod
    def _format_fields(
        model: ImageModel, output_format: OutputFormat, output_compression: int,
    ) -> dict[str, Any]:
        if model is not ImageModel.GPT_IMAGE_1:
            return {"response_format": ResponseFormat.B64_JSON.value}
        fields: dict[str, Any] = {"output_format": output_format.value}
        if output_format is not OutputFormat.PNG:
            fields["output_compression"] = output_compression
        return fields

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generation_payload(self, req: GenerationRequest) -> dict[str, Any]:
        model = req.model
        self._check_size(model, req.size)
        if model is ImageModel.DALL_E_3 and req.n != 1:
            raise UnsupportedOperationError("dall-e-3 only supports generating one image per request (n=1)")
        payload: dict[str, Any] = {
            "model": model.value,
            "prompt": req.prompt,
            "n": req.n,
            "size": req.size.value,
        }
        quality = req.quality.for_model(model)
        if quality is not None:
            payload["quality"] = quality
        if model is ImageModel.DALL_E_3 and req.style is not None:
            payload["style"] = req.style.value
        if model is ImageModel.GPT_IMAGE_1:
            payload["moderation"] = req.moderation.value
        payload.update(self._format_fields(model, req.output_format, req.output_compression))
        return payload

    async def generate(self, req: GenerationRequest) -> list[GeneratedImage]:
        payload = self.generation_payload(req)
        log.info("generate model=%s size=%s n=%s", payload["model"], payload["size"], payload["n"])
        result = await self._request("POST", "/images/generations", json=payload)
        return self._images(result)

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    def edit_fields(self, req: EditRequest) -> dict[str, str]:
        model = req.model
        if not model.supports_edit:
            raise UnsupportedOperationError(
                f"Model {model.value} does not support image editing. "
                "Only gpt-image-1 and dall-e-2 are supported."
            )
        self._check_size(model, req.size)
        if not req.images:
            raise UnsupportedOperationError("At least one input image is required")
        if model is ImageModel.DALL_E_2 and len(req.images) > 1:
            raise UnsupportedOperationError("dall-e-2 accepts exactly one input image")
        fields: dict[str, Any] = {
            "model": model.value,
            "prompt": req.prompt,
            "n": req.n,
            "size": req.size.value,
        }
        quality = req.quality.for_model(model)
        if quality is not None:
            fields["quality"] = quality
        fields.update(self._format_fields(model, req.output_format, req.output_compression))
        # Multipart form values are strings.
        return {key: str(value) for key, value in fields.items()}

    async def edit(self, req: EditRequest) -> list[GeneratedImage]:
        data = self.edit_fields(req)
        image_field = "image[]" if len(req.images) > 1 else "image"
        files: list[tuple[str, tuple[str, bytes, str]]] = []
        for path in req.images:
            files.append((image_field, await _read_upload(path)))
        if req.mask:
            files.append(("mask", await _read_upload(req.mask)))
        log.info("edit model=%s images=%d mask=%s", data["model"], len(req.images), bool(req.mask))
        result = await self._request("POST", "/images/edits", data=data, files=files)
        return self._images(result)

    # ------------------------------------------------------------------
    # URL payloads
    # ------------------------------------------------------------------

    async def download(self, url: str) -> bytes:
        """Fetch an image the service returned by URL instead of inline base64."""
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport, follow_redirects=True,
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
                return response.content
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise RemoteApiError(
                f"Downloading generated image failed with HTTP {status}",
                status_code=status,
                retryable=is_retryable_status(status),
            ) from exc
        except httpx.HTTPError as exc:
            raise RemoteApiError(f"Downloading generated image failed: {exc}", retryable=True) from exc


def _api_error(response: httpx.Response) -> RemoteApiError:
    status = response.status_code
    message = ""
    error_type = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        err = body["error"]
        message = str(err.get("message") or "")
        error_type = err.get("code") or err.get("type")
    if not message:
        message = response.text[:300] or response.reason_phrase
    return RemoteApiError(
        f"OpenAI API error (HTTP {status}): {message}",
        status_code=status,
        retryable=is_retryable_status(status),
        error_type=error_type,
    )


async def _read_upload(path: str) -> tuple[str, bytes, str]:
    content = await asyncio.to_thread(_read_bytes, path)
    mime = mimetypes.guess_type(path)[0] or "application/octet-stream"
    return os.path.basename(path), content, mime


def _read_bytes(path: str) -> bytes:
    with open(path, "rb") as fh:
        return fh.read()
