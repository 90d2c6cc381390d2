"""Generation orchestrator: prompt to persisted image"""

import logging
import re
import time
from dataclasses import replace
from typing import Callable, Dict, Optional, Tuple, Union

import image_processor
from managers.attachment_store import AttachmentStore
from managers.history_ledger import HistoryLedger
from managers.permission_gate import PermissionGate
from managers.request_log import RequestLog
from models.failure import Failure, FailureKind, StorageError, StudioError, is_failure
from models.provenance import ProvenanceEvent
from models.requests import MAX_PROMPT_LENGTH, GenerationRequest, OutputFormat, Provider, Purpose
from models.results import GenerationResult
from orchestrators.dimensions import (
    aspect_ratio_from_dimensions,
    clamp_edge,
    dimensions_for_aspect_ratio,
    sanitize_aspect_ratio,
    sanitize_resolution,
)
from orchestrators.naming import GENERATE_FILENAME_FALLBACK, GENERATE_TITLE_FALLBACK, filename_from_prompt, title_from_prompt
from providers.base import ProviderAdapter
from providers.openai_provider import dimensions_for_size, size_for_request

logger = logging.getLogger("ImageStudio")

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")


def validate_prompt(prompt: str) -> Optional[Failure]:
    if not prompt or len(prompt) > MAX_PROMPT_LENGTH:
        return Failure(FailureKind.INVALID_INPUT, "Invalid prompt.")
    if _CONTROL_CHARS_RE.search(prompt):
        return Failure(FailureKind.INVALID_INPUT, "Prompt contains control characters.")
    return None


class GenerationOrchestrator:
    """Runs validate -> provider call -> normalize -> name -> persist -> record.

    Each step's failure is terminal for the call. A persistence failure is
    reported as storage-error and the generated bytes are not kept.
    """

    def __init__(
        self,
        providers: Dict[Provider, ProviderAdapter],
        store: AttachmentStore,
        ledger: HistoryLedger,
        permissions: PermissionGate,
        settings,
        request_log: Optional[RequestLog] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.providers = providers
        self.store = store
        self.ledger = ledger
        self.permissions = permissions
        self.settings = settings
        self.request_log = request_log
        self._clock = clock

    def generate(self, request: GenerationRequest, user_id: int) -> Union[GenerationResult, Failure]:
        started = time.monotonic()
        result = self._generate(request, user_id)
        self._log(request, user_id, result, started)
        return result

    def _generate(self, request: GenerationRequest, user_id: int) -> Union[GenerationResult, Failure]:
        if not self.permissions.can_generate(user_id):
            return Failure(FailureKind.FORBIDDEN, "You are not allowed to generate images.")

        prompt = (request.prompt or "").strip()
        failure = validate_prompt(prompt)
        if failure:
            return failure

        adapter = self.providers.get(request.provider)
        if adapter is None:
            return Failure(FailureKind.INVALID_INPUT, f"Unsupported provider: {request.provider}")
        if not self.settings.is_connected(request.provider):
            return Failure(FailureKind.NOT_CONNECTED, f"{adapter.label} is not connected. Add an API key in settings.")

        model = adapter.resolve_model(request.model, Purpose.GENERATE)
        try:
            adapter.validate(Purpose.GENERATE, prompt, model, request.references)
            output_format = OutputFormat.coerce(request.output_format)
        except StudioError as e:
            return e.to_failure()
        except ValueError as e:
            return Failure(FailureKind.INVALID_INPUT, str(e))

        planned = self.plan_request(replace(request, prompt=prompt, model=model, output_format=output_format))
        if is_failure(planned):
            return planned
        provider_request, target_size = planned

        binary = adapter.generate(provider_request)
        if is_failure(binary):
            return binary

        normalized = image_processor.normalize(
            binary.data,
            output_format,
            target_size[0],
            target_size[1],
            background=self.settings.get("normalizer.background", image_processor.DEFAULT_BACKGROUND),
        )
        if is_failure(normalized):
            return normalized

        filename_base = filename_from_prompt(prompt, GENERATE_FILENAME_FALLBACK)
        title = title_from_prompt(prompt, GENERATE_TITLE_FALLBACK)
        context = {
            "action": "generate",
            "provider": request.provider.value,
            "model": model,
            "mode": "",
            "prompt": prompt,
            "timestamp": int(self._clock()),
            "user_id": int(user_id),
        }

        try:
            saved = self.store.save(normalized, filename_base, title, context, derived_from=None)
        except StorageError as e:
            logger.error(f"Failed to persist generated image: {e.message}")
            return Failure(FailureKind.STORAGE_ERROR, e.message)

        self._record_history(saved.id, context)
        logger.info(f"Generated attachment {saved.id} with {request.provider.value}/{model}")
        return GenerationResult(
            attachment_id=saved.id,
            url=saved.url,
            filename=saved.filename,
            title=title,
            provider=request.provider.value,
            model=model,
            width=normalized.width,
            height=normalized.height,
            mime=normalized.mime,
        )

    def plan_request(self, request: GenerationRequest) -> Union[Tuple[GenerationRequest, Tuple[Optional[int], Optional[int]]], Failure]:
        """Resolve aspect ratio, dimensions and resolution for the provider call.

        Returns the request to send plus the exact (width, height) to
        normalize to, which is (None, None) when the provider's own output
        size should be kept.
        """
        aspect = sanitize_aspect_ratio(request.aspect_ratio)
        if request.aspect_ratio and not aspect:
            return Failure(FailureKind.INVALID_INPUT, f"Unsupported aspect ratio: {request.aspect_ratio}")
        resolution = sanitize_resolution(request.resolution)
        if request.resolution and not resolution:
            return Failure(FailureKind.INVALID_INPUT, f"Unsupported resolution: {request.resolution}")
        if (request.width is None) != (request.height is None):
            return Failure(FailureKind.INVALID_INPUT, "Width and height must be given together.")

        target: Tuple[Optional[int], Optional[int]] = (None, None)
        if request.width is not None:
            if request.width <= 0 or request.height <= 0:
                return Failure(FailureKind.INVALID_INPUT, "Width and height must be positive.")
            width, height = clamp_edge(request.width), clamp_edge(request.height)
            aspect = aspect or aspect_ratio_from_dimensions(width, height)
            target = (width, height)
        else:
            if not aspect:
                aspect = sanitize_aspect_ratio(self.settings.get("generation_defaults.aspect_ratio")) or "1:1"
            width, height = dimensions_for_aspect_ratio(aspect)

        if request.references:
            primary = request.references[0]
            width, height = max(1, primary.width), max(1, primary.height)
            aspect = aspect_ratio_from_dimensions(width, height)
            target = (width, height)
        elif request.provider is Provider.OPENAI and not request.has_pixel_dimensions:
            width, height = dimensions_for_size(size_for_request(None, None, aspect))

        provider_request = replace(
            request,
            width=width,
            height=height,
            aspect_ratio=aspect or None,
            resolution=resolution or None,
        )
        return provider_request, target

    def _record_history(self, attachment_id: int, context: Dict, derived_from: int = 0):
        event = ProvenanceEvent.from_context(context, attachment_id=attachment_id, derived_from=derived_from)
        try:
            self.ledger.append(attachment_id, event)
        except StorageError as e:
            logger.warning(f"Failed to record history for attachment {attachment_id}: {e.message}")

    def _log(self, request: GenerationRequest, user_id: int, result, started: float):
        if self.request_log is None:
            return
        failure = result if is_failure(result) else None
        self.request_log.record(
            operation="generate",
            provider=getattr(request.provider, "value", str(request.provider)),
            model=result.model if not failure else request.model,
            status="error" if failure else "success",
            response_time_ms=int((time.monotonic() - started) * 1000),
            user_id=user_id,
            attachment_id=0 if failure else result.attachment_id,
            prompt=request.prompt,
            error_code=failure.kind.value if failure else "",
            error_message=failure.message if failure else "",
            reference_count=len(request.references),
            save_mode="new",
        )
