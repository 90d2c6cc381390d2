"""Provider adapter interface and shared request plumbing"""

import base64
import binascii
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from http_client import DEFAULT_TIMEOUT, HttpResponse, HttpTransport, error_for_response, sanitize_message
from image_processor import get_image_metadata
from managers import models_catalog
from models.failure import Failure, FailureKind, ProviderError, StudioError
from models.images import BinaryImage, ReferenceImage
from models.requests import MAX_REFERENCES, EditRequest, GenerationRequest, Provider, Purpose

_NEWLINES_RE = re.compile(r"[\r\n]+")


def normalize_prompt(prompt: str) -> str:
    """Collapse newlines so every provider receives a single-line prompt"""
    return _NEWLINES_RE.sub(" ", prompt or "").strip()


def stringify_error(error: Any, fallback: str = "Unknown error") -> str:
    if isinstance(error, str) and error.strip():
        return sanitize_message(error)
    if isinstance(error, dict):
        message = error.get("message") or error.get("detail")
        if isinstance(message, str) and message.strip():
            return sanitize_message(message)
    return fallback


class ProviderAdapter(ABC):
    """Translates normalized requests into one backend's wire calls.

    Public methods never raise: every outcome is a value, either the result
    or a Failure. Validation happens before any network call, and each
    invocation issues one provider request with no internal retries.
    """

    provider: Provider
    label = "Provider"
    default_timeout: float = DEFAULT_TIMEOUT

    def __init__(self, settings, transport: Optional[HttpTransport] = None, models_cache=None, timeout: Optional[float] = None):
        self.settings = settings
        self.transport = transport or HttpTransport()
        self.models_cache = models_cache
        configured = settings.get(f"providers.{self.provider.value}.timeout")
        self.timeout = timeout or configured or self.default_timeout
        self.logger = logging.getLogger(f"{self.label}Provider")

    # Public contract

    def generate(self, request: GenerationRequest) -> Union[BinaryImage, Failure]:
        try:
            model = self.resolve_model(request.model, Purpose.GENERATE)
            self.validate(Purpose.GENERATE, request.prompt, model, request.references)
            api_key = self._require_credential()
            self.logger.info("Generating with %s (%s reference(s))", model, len(request.references))
            return self._generate(request, model, api_key)
        except StudioError as e:
            self.logger.warning("Generate failed [%s]: %s", e.kind.value, e.message)
            return e.to_failure()
        except Exception:
            self.logger.exception("Unexpected error during %s generate", self.label)
            return Failure(FailureKind.PROVIDER_ERROR, f"Unexpected {self.label} error.")

    def edit(self, request: EditRequest, source: BinaryImage) -> Union[BinaryImage, Failure]:
        try:
            model = self.resolve_model(request.model, Purpose.EDIT)
            self.validate(Purpose.EDIT, request.prompt, model, request.references, extra_images=1)
            if not source or not source.data:
                raise ProviderError("Source image is empty.", FailureKind.INVALID_INPUT)
            api_key = self._require_credential()
            self.logger.info("Editing with %s (%s reference(s))", model, len(request.references))
            return self._edit(request, model, api_key, source)
        except StudioError as e:
            self.logger.warning("Edit failed [%s]: %s", e.kind.value, e.message)
            return e.to_failure()
        except Exception:
            self.logger.exception("Unexpected error during %s edit", self.label)
            return Failure(FailureKind.PROVIDER_ERROR, f"Unexpected {self.label} error.")

    def list_models(self, purpose: Purpose) -> Union[List[str], Failure]:
        """Catalog models for the purpose, narrowed to the live listing when the backend has one"""
        try:
            try:
                purpose = Purpose(purpose)
            except ValueError:
                raise ProviderError(f"Unknown purpose: {purpose}", FailureKind.INVALID_INPUT)
            catalog = models_catalog.get(purpose, self.provider)
            api_key = self._require_credential()

            live = self.models_cache.get(self.provider) if self.models_cache is not None else None
            if live is None:
                live = self._fetch_live_models(api_key)
                if live is None:
                    return catalog
                if self.models_cache is not None:
                    self.models_cache.set(self.provider, live)
            available = set(live)
            return [model for model in catalog if model in available]
        except StudioError as e:
            self.logger.warning("Model listing failed [%s]: %s", e.kind.value, e.message)
            return e.to_failure()
        except Exception:
            self.logger.exception("Unexpected error listing %s models", self.label)
            return Failure(FailureKind.PROVIDER_ERROR, f"Unexpected {self.label} error.")

    # Validation

    def resolve_model(self, model: str, purpose: Purpose) -> str:
        model = (model or "").strip()
        if model:
            return model
        return models_catalog.provider_default_model(self.provider, purpose, self.settings.default_model(self.provider))

    def validate(
        self,
        purpose: Purpose,
        prompt: str,
        model: str,
        references: Sequence[ReferenceImage],
        extra_images: int = 0,
    ):
        """Local checks that must pass before any network call.

        Raises:
            ProviderError: With kind invalid-input or model-unsupported
        """
        if not prompt or not prompt.strip():
            raise ProviderError("Prompt is required.", FailureKind.INVALID_INPUT)
        if len(references) > MAX_REFERENCES:
            raise ProviderError(
                f"At most {MAX_REFERENCES} reference images are allowed.",
                FailureKind.INVALID_INPUT,
            )
        if not models_catalog.is_listed(purpose, self.provider, model):
            raise ProviderError(
                f"Model '{model}' is not available for {purpose.value} with {self.label}.",
                FailureKind.MODEL_UNSUPPORTED,
            )
        if len(references) + extra_images > 1 and not models_catalog.supports_multi_reference(self.provider, model):
            raise ProviderError(
                "Selected model does not support multiple reference images.",
                FailureKind.INVALID_INPUT,
            )

    def _require_credential(self) -> str:
        api_key = self.settings.get_provider_credential(self.provider)
        if not api_key:
            raise ProviderError(f"{self.label} is not connected. Add an API key in settings.", FailureKind.NOT_CONNECTED)
        return api_key

    # Backend hooks

    @abstractmethod
    def _generate(self, request: GenerationRequest, model: str, api_key: str) -> BinaryImage:
        ...

    @abstractmethod
    def _edit(self, request: EditRequest, model: str, api_key: str, source: BinaryImage) -> BinaryImage:
        ...

    def _fetch_live_models(self, api_key: str) -> Optional[List[str]]:
        """Live model identifiers, or None when the backend has no listing endpoint"""
        return None

    # HTTP helpers

    def _decode_json(self, response: HttpResponse) -> Dict[str, Any]:
        if not response.ok:
            raise error_for_response(response)
        try:
            data = response.json()
        except (ValueError, UnicodeDecodeError):
            raise ProviderError(f"Invalid response from {self.label}.", FailureKind.MALFORMED_RESPONSE)
        if not isinstance(data, dict):
            raise ProviderError(f"Invalid response from {self.label}.", FailureKind.MALFORMED_RESPONSE)
        return data

    def _post_json(self, url: str, headers: Dict[str, str], payload: Dict[str, Any]) -> Dict[str, Any]:
        response = self.transport.request("POST", url, headers=headers, json=payload, timeout=self.timeout)
        return self._decode_json(response)

    def _download(self, url: str) -> Tuple[bytes, str]:
        response = self.transport.get(url, timeout=self.timeout)
        if not response.ok:
            raise ProviderError(
                f"{self.label} image download failed (HTTP {response.status}).",
                FailureKind.PROVIDER_ERROR,
            )
        if not response.content:
            raise ProviderError(f"{self.label} returned empty image data.", FailureKind.MALFORMED_RESPONSE)
        content_type = ""
        for key, value in response.headers.items():
            if key.lower() == "content-type":
                content_type = value.split(";", 1)[0].strip().lower()
        return response.content, content_type

    def _image_from_b64(self, encoded: str, mime_hint: str = "") -> BinaryImage:
        try:
            data = base64.b64decode(encoded, validate=False)
        except (binascii.Error, ValueError):
            raise ProviderError(f"Failed to decode base64 image data from {self.label}.", FailureKind.MALFORMED_RESPONSE)
        return self._image_from_bytes(data, mime_hint)

    def _image_from_bytes(self, data: bytes, mime_hint: str = "") -> BinaryImage:
        try:
            info = get_image_metadata(data)
        except ValueError:
            raise ProviderError(f"{self.label} response did not contain a readable image.", FailureKind.MALFORMED_RESPONSE)
        mime = info["mime"]
        if mime == "application/octet-stream":
            mime = mime_hint or "image/png"
        return BinaryImage(data=data, mime=mime, width=info["width"], height=info["height"])
