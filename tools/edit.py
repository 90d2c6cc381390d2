"""Image edit and edit-buffer tools"""

import logging
from typing import Any, List, Optional

from mcp.server.fastmcp import FastMCP, Image as FastMCPImage

from image_processor import create_preview
from models.failure import FailureKind, is_failure
from models.requests import EditRequest, OutputFormat, Provider, SaveMode
from orchestrators.edit import EditOrchestrator
from tools.helpers import build_response, current_user_id, decode_references, error_response

logger = logging.getLogger("MCP_Server")


def register_edit_tools(
    mcp: FastMCP,
    orchestrator: EditOrchestrator,
    settings
):
    """Register edit and edit-buffer tools with the MCP server"""

    @mcp.tool()
    def edit_image(
        attachment_id: int,
        prompt: str,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        save_mode: str = "new",
        output_format: Optional[str] = None,
        base_buffer_key: Optional[str] = None,
        references: Optional[List[Any]] = None,
        filename: Optional[str] = None,
        title: Optional[str] = None,
    ) -> dict:
        """Edit a saved image with a text instruction.

        The output keeps the source image's dimensions. Pass base_buffer_key to
        chain onto a previous buffered edit instead of the stored original.

        Args:
            attachment_id: Attachment to edit (from generate_image or a previous edit)
            prompt: Edit instruction (max 4000 characters)
            provider: "gemini", "openai" or "replicate"
            model: Edit-capable model (see list_models with purpose="edit")
            save_mode: "new" saves a new copy, "replace" overwrites the original,
                "buffer" holds the result for commit_edit_buffer
            output_format: "png", "webp" or "jpeg"; ignored when replacing
            base_buffer_key: Buffer key of a previous edit to use as the source
            references: Up to 4 extra reference images (base64 or data URI)
            filename: Optional filename for the new copy
            title: Optional title for the new copy

        Returns:
            For "new"/"replace": attachment_id, url, filename, provider, model,
            width, height, mime, mode (and derived_from_id for new copies).
            For "buffer": buffer_key, width, height, mime, attachment_id,
            provider, model, prompt. {"error": {"kind", "message"}} on failure.
        """
        try:
            decoded = decode_references(references)
            if is_failure(decoded):
                return build_response(decoded)

            request = EditRequest(
                attachment_id=int(attachment_id),
                prompt=prompt,
                provider=Provider.coerce(provider or settings.get("generation_defaults.provider", "gemini")),
                model=model or "",
                output_format=OutputFormat.coerce(output_format) if output_format else None,
                save_mode=SaveMode.coerce(save_mode),
                base_buffer_key=base_buffer_key or None,
                references=decoded,
                filename=filename,
                title=title,
            )
        except ValueError as e:
            return error_response(FailureKind.INVALID_INPUT, str(e))

        orchestrator.buffer.cleanup_expired()
        try:
            return build_response(orchestrator.edit(request, current_user_id(settings)))
        except Exception as exc:
            logger.exception("edit_image failed for attachment %s", attachment_id)
            return error_response(FailureKind.PROVIDER_ERROR, str(exc))

    @mcp.tool()
    def commit_edit_buffer(
        buffer_key: str,
        save_mode: str = "new",
        filename: Optional[str] = None,
        title: Optional[str] = None,
    ) -> dict:
        """Save a buffered edit permanently.

        A buffer can be committed once; afterwards its key is no longer valid.

        Args:
            buffer_key: Key returned by edit_image with save_mode="buffer"
            save_mode: "new" to save a copy, "replace" to overwrite the original
            filename: Optional filename for the new copy
            title: Optional title for the new copy

        Returns:
            The saved attachment (same shape as edit_image), or an error.
        """
        try:
            mode = SaveMode.coerce(save_mode)
        except ValueError as e:
            return error_response(FailureKind.INVALID_INPUT, str(e))
        try:
            return build_response(
                orchestrator.commit(buffer_key, current_user_id(settings), mode, filename=filename, title=title)
            )
        except Exception as exc:
            logger.exception("commit_edit_buffer failed")
            return error_response(FailureKind.STORAGE_ERROR, str(exc))

    @mcp.tool()
    def discard_edit_buffer(buffer_key: str) -> dict:
        """Throw away a buffered edit and its bytes.

        Args:
            buffer_key: Key returned by edit_image with save_mode="buffer"

        Returns:
            {"success": True, "buffer_key": ...} or a not-found error.
        """
        result = orchestrator.discard(buffer_key, current_user_id(settings))
        if is_failure(result):
            return build_response(result)
        return {"success": True, "buffer_key": buffer_key}

    @mcp.tool()
    def get_edit_buffer(buffer_key: str, mode: str = "metadata", max_dim: int = 512):
        """Inspect a buffered edit; reading it keeps the buffer alive.

        Args:
            buffer_key: Key returned by edit_image with save_mode="buffer"
            mode: "metadata" (info only, default) or "thumb" (inline WebP preview)
            max_dim: Longest preview edge in pixels for mode="thumb"

        Returns:
            Buffer info dict, an inline image for mode="thumb", or an error.
        """
        if mode not in ("metadata", "thumb"):
            return error_response(FailureKind.INVALID_INPUT, f"Mode '{mode}' not supported. Use 'metadata' or 'thumb'.")

        # Cleanup expired buffers periodically
        orchestrator.buffer.cleanup_expired()

        loaded = orchestrator.read_buffer(buffer_key, current_user_id(settings))
        if is_failure(loaded):
            return build_response(loaded)
        info, image = loaded
        if mode == "metadata":
            return info.to_dict()

        try:
            preview = create_preview(image.data, max_dim=max(64, min(int(max_dim), 1024)))
        except ValueError as e:
            logger.warning(f"Refusing to inline buffer {buffer_key}: {e}")
            return error_response(FailureKind.INVALID_INPUT, str(e))
        return FastMCPImage(data=preview, format="webp")
