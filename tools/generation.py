"""Image generation tools"""

import logging
from typing import Any, List, Optional

from mcp.server.fastmcp import FastMCP

from models.failure import FailureKind, is_failure
from models.requests import GenerationRequest, OutputFormat, Provider
from orchestrators.generation import GenerationOrchestrator
from tools.helpers import build_response, current_user_id, decode_references, error_response

logger = logging.getLogger("MCP_Server")


def register_generation_tools(
    mcp: FastMCP,
    orchestrator: GenerationOrchestrator,
    settings
):
    """Register image generation tools with the MCP server"""

    @mcp.tool()
    def generate_image(
        prompt: str,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        aspect_ratio: Optional[str] = None,
        width: Optional[int] = None,
        height: Optional[int] = None,
        resolution: Optional[str] = None,
        output_format: Optional[str] = None,
        references: Optional[List[Any]] = None,
    ) -> dict:
        """Generate a new image from a text prompt and save it as an attachment.

        Unset options fall back to the configured generation defaults. With
        reference images the output takes the first reference's dimensions.

        Args:
            prompt: What to draw (max 4000 characters)
            provider: "gemini", "openai" or "replicate"
            model: Provider model identifier (see list_models); provider default when omitted
            aspect_ratio: One of 1:1, 16:9, 21:9, 3:2, 2:3, 4:5, 5:4, 3:4, 4:3, 9:16, 9:21
            width: Exact output width in pixels (requires height)
            height: Exact output height in pixels (requires width)
            resolution: "1K", "2K" or "4K" for models that support it
            output_format: "png", "webp" or "jpeg"
            references: Up to 4 reference images, each base64 (or a data URI) or {"data": ..., "filename": ...}

        Returns:
            attachment_id, url, filename, title, provider, model, width, height
            and mime; or {"error": {"kind", "message"}} on failure.
        """
        try:
            decoded = decode_references(references)
            if is_failure(decoded):
                return build_response(decoded)

            request = GenerationRequest(
                prompt=prompt,
                provider=Provider.coerce(provider or settings.get("generation_defaults.provider", "gemini")),
                model=model or "",
                width=int(width) if width is not None else None,
                height=int(height) if height is not None else None,
                aspect_ratio=aspect_ratio,
                resolution=resolution,
                output_format=OutputFormat.coerce(output_format or settings.get("generation_defaults.format", "png")),
                references=decoded,
            )
        except ValueError as e:
            return error_response(FailureKind.INVALID_INPUT, str(e))

        try:
            result = orchestrator.generate(request, current_user_id(settings))
            return build_response(result)
        except Exception as exc:
            logger.exception("generate_image failed")
            return error_response(FailureKind.PROVIDER_ERROR, str(exc))
