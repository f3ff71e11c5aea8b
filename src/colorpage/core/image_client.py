"""Image-generation vendor client.

:class:`ImageClient` is the single point of contact with the vendor's image
API.  It owns one ``AsyncOpenAI`` instance created at application startup and
exposes the two calls the service needs:

- :meth:`ImageClient.generate` — text-to-image generation.
- :meth:`ImageClient.edit` — image editing from one or more source photos,
  used for coloring pages.

Vendor failures are translated into :class:`UpstreamError` carrying the
vendor-reported status code and message, so the HTTP layer can pass them
through unchanged.  Calls are not retried and have no extra timeout: a call
either completes or fails the request.
"""

from __future__ import annotations

import logging

import openai
from openai import AsyncOpenAI

from colorpage.core.config import ColorPageConfig
from colorpage.core.exceptions import UpstreamError

logger = logging.getLogger(__name__)

# SDK file tuple: (filename, bytes, mime type).
ImageFile = tuple[str, bytes, str]


class ImageClient:
    """Async wrapper around the vendor image endpoints.

    Args:
        client: An ``AsyncOpenAI`` instance.
        model: Model name sent with every call.
    """

    def __init__(self, client: AsyncOpenAI, model: str):
        self.client = client
        self.model = model

    @classmethod
    def from_config(cls, cfg: ColorPageConfig) -> ImageClient:
        """Build a client from configuration.

        Raises:
            ConfigurationError: If no API key is configured.
        """
        api_key = cfg.require("openai_api_key")
        return cls(AsyncOpenAI(api_key=api_key, base_url=cfg.openai_base_url), cfg.image_model)

    async def generate(self, **params):
        """Call the generation endpoint with ``params`` (prompt, n, size, ...)."""
        logger.info(
            f"Calling image generate: n={params.get('n')}, size={params.get('size')}, "
            f"quality={params.get('quality')}"
        )
        try:
            return await self.client.images.generate(model=self.model, **params)
        except openai.APIStatusError as e:
            logger.error(f"Image generate failed with status {e.status_code}: {e.message}")
            raise UpstreamError(e.message, status_code=e.status_code) from e
        except openai.OpenAIError as e:
            logger.error(f"Image generate failed: {e}")
            raise UpstreamError(str(e)) from e

    async def edit(
        self,
        images: list[ImageFile],
        prompt: str,
        mask: ImageFile | None = None,
        **params,
    ):
        """Call the edit endpoint with one or more source photos."""
        logger.info(
            f"Calling image edit: images=[{', '.join(name for name, _, _ in images)}], "
            f"mask={mask[0] if mask else 'N/A'}, prompt={prompt[:100]}..."
        )
        if mask is not None:
            params["mask"] = mask
        try:
            return await self.client.images.edit(
                model=self.model,
                image=images,
                prompt=prompt,
                **params,
            )
        except openai.APIStatusError as e:
            logger.error(f"Image edit failed with status {e.status_code}: {e.message}")
            raise UpstreamError(e.message, status_code=e.status_code) from e
        except openai.OpenAIError as e:
            logger.error(f"Image edit failed: {e}")
            raise UpstreamError(str(e)) from e

    async def close(self) -> None:
        await self.client.close()
