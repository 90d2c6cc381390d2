"""Replicate predictions adapter"""

import time
from typing import Any, Dict, List, Optional

from managers import models_catalog
from models.failure import FailureKind, ProviderError
from models.images import BinaryImage
from models.requests import EditRequest, GenerationRequest, OutputFormat, Provider
from providers.base import ProviderAdapter, normalize_prompt, stringify_error

API_BASE = "https://api.replicate.com/v1"

DEFAULT_POLL_ATTEMPTS = 30
DEFAULT_POLL_INTERVAL = 2.0

PENDING_STATUSES = ("starting", "processing")
FAILED_STATUSES = ("failed", "canceled")

# Models that take a list of images under `image_input`
LIST_INPUT_FAMILIES = ("nano-banana", "seedream")


def format_for_request(output_format: Optional[OutputFormat]) -> str:
    if output_format is None:
        return ""
    return {
        OutputFormat.WEBP: "webp",
        OutputFormat.JPEG: "jpg",
        OutputFormat.PNG: "png",
    }[output_format]


def extract_output_url(output: Any) -> str:
    """Output may be a URL, a list of URLs, or a list of dicts holding one"""
    if isinstance(output, str) and output:
        return output
    if isinstance(output, list) and output:
        first = output[0]
        if isinstance(first, str) and first:
            return first
        if isinstance(first, dict):
            for key in ("image", "output", "url"):
                if isinstance(first.get(key), str) and first[key]:
                    return first[key]
    raise ProviderError("Replicate response missing output URL.", FailureKind.MALFORMED_RESPONSE)


def _takes_image_list(model: str) -> bool:
    needle = model.lower()
    return any(family in needle for family in LIST_INPUT_FAMILIES)


def edit_input_for_model(model: str, prompt: str, data_uri: str, output_format: str) -> Dict[str, Any]:
    """Per-family input defaults for edit models"""
    inputs: Dict[str, Any] = {
        "prompt": prompt,
        "output_format": output_format or "png",
        "output_quality": 80,
    }
    needle = model.lower()
    if _takes_image_list(model):
        inputs["image_input"] = [data_uri]
    elif "flux-kontext" in needle:
        inputs["input_image"] = data_uri
        inputs["aspect_ratio"] = "match_input_image"
        inputs["output_format"] = "jpg"
        if "flux-kontext-max" in needle:
            inputs["safety_tolerance"] = 2
        elif "flux-kontext-dev" in needle:
            inputs["go_fast"] = True
            inputs["guidance"] = 2.5
            inputs["num_inference_steps"] = 30
    else:
        inputs["image"] = data_uri
        if "qwen-image-edit" in needle:
            inputs["go_fast"] = True
    return inputs


class ReplicateProvider(ProviderAdapter):
    """Creates a prediction with `Prefer: wait` and, when the prediction is
    still running after the synchronous window, polls it a bounded number
    of times.
    """

    provider = Provider.REPLICATE
    label = "Replicate"
    default_timeout = 60

    def __init__(self, settings, transport=None, models_cache=None, timeout=None, poll_attempts=None, poll_interval=None):
        super().__init__(settings, transport=transport, models_cache=models_cache, timeout=timeout)
        if poll_attempts is None:
            poll_attempts = settings.get("providers.replicate.poll_attempts", DEFAULT_POLL_ATTEMPTS)
        if poll_interval is None:
            poll_interval = settings.get("providers.replicate.poll_interval", DEFAULT_POLL_INTERVAL)
        self.poll_attempts = max(int(poll_attempts), 0)
        self.poll_interval = max(float(poll_interval), 0.0)

    def _auth(self, api_key: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {api_key}"}

    def _generate(self, request: GenerationRequest, model: str, api_key: str) -> BinaryImage:
        inputs: Dict[str, Any] = {"prompt": normalize_prompt(request.prompt)}
        if request.aspect_ratio:
            inputs["aspect_ratio"] = request.aspect_ratio
        output_format = format_for_request(request.output_format)
        if output_format:
            inputs["output_format"] = output_format
        if request.resolution and models_catalog.supports_resolution(self.provider, model):
            inputs["resolution"] = request.resolution
        if request.references:
            data_uris = [reference.data_uri() for reference in request.references]
            if _takes_image_list(model):
                inputs["image_input"] = list(reversed(data_uris))
            else:
                inputs["image"] = data_uris[0]
        return self._run(model, inputs, api_key)

    def _edit(self, request: EditRequest, model: str, api_key: str, source: BinaryImage) -> BinaryImage:
        output_format = request.output_format or self.settings.get("generation_defaults.format", "png")
        try:
            output_format = OutputFormat.coerce(output_format)
        except ValueError:
            output_format = OutputFormat.PNG
        inputs = edit_input_for_model(
            model,
            normalize_prompt(request.prompt),
            source.data_uri(),
            format_for_request(output_format),
        )
        if request.references and _takes_image_list(model):
            # Source first, then references in reverse upload order
            bundle = [reference.data_uri() for reference in request.references] + [source.data_uri()]
            inputs["image_input"] = list(reversed(bundle))
        return self._run(model, inputs, api_key)

    def _run(self, model: str, inputs: Dict[str, Any], api_key: str) -> BinaryImage:
        url = f"{API_BASE}/models/{model}/predictions"
        headers = {
            **self._auth(api_key),
            "Content-Type": "application/json",
            "Prefer": "wait",
        }
        prediction = self._post_json(url, headers, {"input": inputs})
        prediction = self._wait_for_prediction(prediction, api_key)
        content, mime = self._download(extract_output_url(prediction.get("output")))
        return self._image_from_bytes(content, mime)

    def _wait_for_prediction(self, prediction: Dict[str, Any], api_key: str) -> Dict[str, Any]:
        for attempt in range(self.poll_attempts + 1):
            if prediction.get("error"):
                message = stringify_error(prediction["error"])
                raise ProviderError(f"Replicate API error: {message}", FailureKind.PROVIDER_ERROR)

            status = prediction.get("status")
            if status in FAILED_STATUSES:
                raise ProviderError(f"Replicate prediction {status}.", FailureKind.PROVIDER_ERROR)
            if status not in PENDING_STATUSES:
                if not prediction.get("output"):
                    raise ProviderError("Replicate API returned no output.", FailureKind.MALFORMED_RESPONSE)
                return prediction

            poll_url = (prediction.get("urls") or {}).get("get")
            if not poll_url:
                raise ProviderError("Replicate prediction is pending without a status URL.", FailureKind.MALFORMED_RESPONSE)
            if attempt >= self.poll_attempts:
                break
            self.logger.info("Prediction %s on attempt %s, polling", status, attempt + 1)
            time.sleep(self.poll_interval)
            response = self.transport.get(poll_url, headers=self._auth(api_key), timeout=self.timeout)
            prediction = self._decode_json(response)

        raise ProviderError(
            f"Replicate prediction did not complete after {self.poll_attempts} polls.",
            FailureKind.PROVIDER_TIMEOUT,
        )
