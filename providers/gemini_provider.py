"""Google Gemini image generation adapter"""

from typing import Any, Dict, List, Optional
from urllib.parse import quote

from managers import models_catalog
from models.failure import FailureKind, ProviderError
from models.images import BinaryImage
from models.requests import EditRequest, GenerationRequest, Provider
from providers.base import ProviderAdapter, normalize_prompt, stringify_error

API_BASE = "https://generativelanguage.googleapis.com/v1beta"


def is_imagen_model(model: str) -> bool:
    return model.startswith("imagen-")


def _inline_part(mime: str, encoded: str) -> Dict[str, Any]:
    return {"inline_data": {"mime_type": mime or "image/png", "data": encoded}}


class GeminiProvider(ProviderAdapter):
    """generateContent with an IMAGE response modality.

    Reference images follow the text part; on edit the source image is
    appended last.
    """

    provider = Provider.GEMINI
    label = "Gemini"
    default_timeout = 60

    def _headers(self, api_key: str) -> Dict[str, str]:
        return {"x-goog-api-key": api_key, "Content-Type": "application/json"}

    def _url(self, model: str) -> str:
        return f"{API_BASE}/models/{quote(model, safe='')}:generateContent"

    def build_payload(
        self,
        model: str,
        parts: List[Dict[str, Any]],
        aspect_ratio: Optional[str] = None,
        resolution: Optional[str] = None,
    ) -> Dict[str, Any]:
        generation_config: Dict[str, Any] = {"responseModalities": ["IMAGE"]}
        image_config: Dict[str, Any] = {}
        if aspect_ratio:
            image_config["aspectRatio"] = aspect_ratio
        if resolution and models_catalog.supports_resolution(self.provider, model):
            image_config["imageSize"] = resolution
        if image_config:
            generation_config["imageConfig"] = image_config
        return {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": generation_config,
        }

    def _generate(self, request: GenerationRequest, model: str, api_key: str) -> BinaryImage:
        if is_imagen_model(model):
            return self._generate_imagen(request, model, api_key)
        parts: List[Dict[str, Any]] = [{"text": normalize_prompt(request.prompt)}]
        for reference in request.references:
            parts.append(_inline_part(reference.mime, reference.b64()))
        payload = self.build_payload(model, parts, request.aspect_ratio, request.resolution)
        data = self._post_json(self._url(model), self._headers(api_key), payload)
        return self.extract_image(data)

    def _generate_imagen(self, request: GenerationRequest, model: str, api_key: str) -> BinaryImage:
        """Imagen models are served by :predict and take no reference images"""
        if request.references:
            raise ProviderError(f"{model} does not accept reference images.", FailureKind.INVALID_INPUT)
        parameters: Dict[str, Any] = {"sampleCount": 1}
        if request.aspect_ratio:
            parameters["aspectRatio"] = request.aspect_ratio
        payload = {
            "instances": [{"prompt": normalize_prompt(request.prompt)}],
            "parameters": parameters,
        }
        url = f"{API_BASE}/models/{quote(model, safe='')}:predict"
        data = self._post_json(url, self._headers(api_key), payload)

        predictions = data.get("predictions")
        if isinstance(predictions, list):
            for prediction in predictions:
                if isinstance(prediction, dict) and isinstance(prediction.get("bytesBase64Encoded"), str):
                    return self._image_from_b64(prediction["bytesBase64Encoded"], prediction.get("mimeType") or "image/png")
        if data.get("error"):
            raise ProviderError(stringify_error(data["error"], "Gemini API error"), FailureKind.PROVIDER_ERROR)
        raise ProviderError("Imagen response did not include image bytes.", FailureKind.MALFORMED_RESPONSE)

    def _edit(self, request: EditRequest, model: str, api_key: str, source: BinaryImage) -> BinaryImage:
        parts: List[Dict[str, Any]] = [{"text": normalize_prompt(request.prompt)}]
        for reference in request.references:
            parts.append(_inline_part(reference.mime, reference.b64()))
        parts.append(_inline_part(source.mime, source.b64()))
        payload = self.build_payload(model, parts)
        data = self._post_json(self._url(model), self._headers(api_key), payload)
        return self.extract_image(data)

    def extract_image(self, data: Dict[str, Any]) -> BinaryImage:
        if data.get("error"):
            raise ProviderError(stringify_error(data["error"], "Gemini API error"), FailureKind.PROVIDER_ERROR)

        candidates = data.get("candidates")
        parts = []
        if isinstance(candidates, list) and candidates and isinstance(candidates[0], dict):
            content = candidates[0].get("content") or {}
            parts = content.get("parts") or [] if isinstance(content, dict) else []

        for part in parts:
            if not isinstance(part, dict):
                continue
            inline = part.get("inlineData") or part.get("inline_data")
            if isinstance(inline, dict) and isinstance(inline.get("data"), str) and inline["data"]:
                mime = inline.get("mimeType") or inline.get("mime_type") or "image/png"
                return self._image_from_b64(inline["data"], mime)

        feedback = data.get("promptFeedback")
        if isinstance(feedback, dict) and feedback.get("blockReason"):
            raise ProviderError(f"Gemini blocked the request: {feedback['blockReason']}", FailureKind.INVALID_INPUT)
        raise ProviderError("Gemini response did not include image bytes.", FailureKind.MALFORMED_RESPONSE)

    def _fetch_live_models(self, api_key: str) -> Optional[List[str]]:
        response = self.transport.get(
            f"{API_BASE}/models?pageSize=1000",
            headers={"x-goog-api-key": api_key},
            timeout=self.timeout,
        )
        data = self._decode_json(response)
        models = []
        for entry in data.get("models") or []:
            name = entry.get("name") if isinstance(entry, dict) else None
            if isinstance(name, str) and name:
                models.append(name.split("/", 1)[1] if name.startswith("models/") else name)
        return models
