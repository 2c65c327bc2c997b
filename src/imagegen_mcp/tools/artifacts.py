from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import os
import uuid
from datetime import datetime

from ..state import OutputFormat
from .errors import WriteError

log = logging.getLogger("imagegen-mcp.artifacts")

_IMAGE_EXTENSIONS = {
    ".png": OutputFormat.PNG,
    ".jpg": OutputFormat.JPEG,
    ".jpeg": OutputFormat.JPEG,
    ".webp": OutputFormat.WEBP,
}


def unique_filename(fmt: OutputFormat) -> str:
    ts = datetime.now().strftime("%Y%m%d_%H%M%S")
    return f"image-{ts}-{uuid.uuid4().hex[:8]}{fmt.extension}"


class ArtifactWriter:
    """Persist decoded image payloads to disk.

    ``destination_hint`` decides placement: ``None`` writes into the
    current working directory, an existing directory (or a path ending in a
    separator) receives a generated name, anything else is taken as the
    exact file path.  An existing file is never replaced unless the writer
    was built with ``overwrite=True``.
    """

    def __init__(self, overwrite: bool = False) -> None:
        self.overwrite = overwrite

    def resolve(
        self,
        fmt: OutputFormat,
        destination_hint: str | None = None,
        index: int | None = None,
    ) -> str:
        hint = (destination_hint or "").strip()
        if not hint:
            return os.path.abspath(os.path.join(os.getcwd(), unique_filename(fmt)))
        hint = os.path.expanduser(hint)
        if os.path.isdir(hint) or hint.endswith((os.sep, "/")):
            return os.path.abspath(os.path.join(hint, unique_filename(fmt)))
        root, ext = os.path.splitext(hint)
        named = _IMAGE_EXTENSIONS.get(ext.lower())
        if not ext:
            ext = fmt.extension
        elif named is not None and named is not fmt:
            log.warning("%s names %s but the image is %s; saving as %s", hint, ext, fmt.value, fmt.extension)
            ext = fmt.extension
        if index is not None:
            root = f"{root}-{index + 1}"
        return os.path.abspath(root + ext)

    async def save(
        self,
        b64_payload: str,
        fmt: OutputFormat,
        destination_hint: str | None = None,
        *,
        index: int | None = None,
    ) -> str:
        try:
            data = base64.b64decode(b64_payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise WriteError(f"Image payload is not valid base64: {exc}") from exc
        return await self.write_bytes(data, fmt, destination_hint, index=index)

    async def write_bytes(
        self,
        data: bytes,
        fmt: OutputFormat,
        destination_hint: str | None = None,
        *,
        index: int | None = None,
    ) -> str:
        path = self.resolve(fmt, destination_hint, index)
        await asyncio.to_thread(self._write, path, data)
        log.info("saved %s (%d bytes)", path, len(data))
        return path

    def _write(self, path: str, data: bytes) -> None:
        directory = os.path.dirname(path)
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as exc:
            raise WriteError(f"Failed to create directory {directory}: {exc.strerror or exc}") from exc
        try:
            with open(path, "wb" if self.overwrite else "xb") as fh:
                fh.write(data)
        except FileExistsError as exc:
            raise WriteError(
                f"Refusing to overwrite existing file: {path} "
                "(choose another outputPath or enable overwrite)"
            ) from exc
        except OSError as exc:
            raise WriteError(f"Failed to write {path}: {exc.strerror or exc}") from exc
