"""OpenAI Images API adapter"""

from typing import Any, Dict, List, Optional, Tuple

from models.failure import FailureKind, ProviderError
from models.images import BinaryImage
from models.requests import EditRequest, GenerationRequest, Provider
from providers.base import ProviderAdapter, normalize_prompt, stringify_error

API_BASE = "https://api.openai.com/v1"
GENERATIONS_URL = f"{API_BASE}/images/generations"
EDITS_URL = f"{API_BASE}/images/edits"
MODELS_URL = f"{API_BASE}/models"

SQUARE = "1024x1024"
LANDSCAPE = "1536x1024"
PORTRAIT = "1024x1536"


def size_for_request(width: Optional[int], height: Optional[int], aspect_ratio: Optional[str] = None) -> str:
    """Map an aspect ratio, or pixel dimensions, onto a supported size string"""
    if aspect_ratio:
        ratio = aspect_ratio.strip().upper()
        if ratio == "1:1":
            return SQUARE
        if ratio == "3:2":
            return LANDSCAPE
        if ratio == "2:3":
            return PORTRAIT
        parts = ratio.split(":")
        if len(parts) == 2:
            try:
                left = max(1.0, float(parts[0]))
                right = max(1.0, float(parts[1]))
            except ValueError:
                left = right = 1.0
            if abs(left - right) < 0.01:
                return SQUARE
            return LANDSCAPE if left > right else PORTRAIT

    width = max(256, min(1792, int(width or 1024)))
    height = max(256, min(1792, int(height or 1024)))
    if width == height:
        return SQUARE
    return LANDSCAPE if width > height else PORTRAIT


def dimensions_for_size(size: str) -> Tuple[int, int]:
    width, height = size.split("x", 1)
    return int(width), int(height)


class OpenAIProvider(ProviderAdapter):
    """Generations endpoint for text-only prompts; the edits endpoint
    (multipart) whenever images are attached.
    """

    provider = Provider.OPENAI
    label = "OpenAI"
    default_timeout = 120

    def _auth(self, api_key: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {api_key}"}

    def _generate(self, request: GenerationRequest, model: str, api_key: str) -> BinaryImage:
        if request.references:
            fields = {
                "model": model,
                "prompt": normalize_prompt(request.prompt),
                "n": "1",
                "size": size_for_request(request.width, request.height),
            }
            files = [
                ("image[]", (reference.filename or f"reference-{index}", reference.data, reference.mime))
                for index, reference in enumerate(request.references)
            ]
            if len(files) == 1:
                files = [("image", files[0][1])]
            return self._multipart(api_key, fields, files)

        payload = {
            "model": model,
            "prompt": normalize_prompt(request.prompt),
            "n": 1,
            "size": size_for_request(request.width, request.height, request.aspect_ratio),
        }
        headers = {**self._auth(api_key), "Content-Type": "application/json"}
        data = self._post_json(GENERATIONS_URL, headers, payload)
        return self.image_from_payload(data)

    def _edit(self, request: EditRequest, model: str, api_key: str, source: BinaryImage) -> BinaryImage:
        fields = {
            "model": model,
            "prompt": normalize_prompt(request.prompt),
            "n": "1",
            "size": size_for_request(source.width, source.height),
        }
        source_file = (f"source.{source.mime.split('/')[-1]}", source.data, source.mime)
        if request.references:
            files = [
                ("image[]", (reference.filename or f"reference-{index}", reference.data, reference.mime))
                for index, reference in enumerate(request.references)
            ]
            files.append(("image[]", source_file))
        else:
            files = [("image", source_file)]
        return self._multipart(api_key, fields, files)

    def _multipart(self, api_key: str, fields: Dict[str, str], files: List[Tuple[str, Any]]) -> BinaryImage:
        response = self.transport.request(
            "POST",
            EDITS_URL,
            headers=self._auth(api_key),
            data=fields,
            files=files,
            timeout=self.timeout,
        )
        return self.image_from_payload(self._decode_json(response))

    def image_from_payload(self, data: Dict[str, Any]) -> BinaryImage:
        if data.get("error"):
            raise ProviderError(stringify_error(data["error"], "OpenAI API error"), FailureKind.PROVIDER_ERROR)
        entries = data.get("data")
        if not isinstance(entries, list) or not entries or not isinstance(entries[0], dict):
            raise ProviderError("OpenAI response did not include image data.", FailureKind.MALFORMED_RESPONSE)
        entry = entries[0]
        if isinstance(entry.get("b64_json"), str) and entry["b64_json"]:
            return self._image_from_b64(entry["b64_json"])
        if isinstance(entry.get("url"), str) and entry["url"]:
            content, mime = self._download(entry["url"])
            return self._image_from_bytes(content, mime)
        raise ProviderError("OpenAI response did not include image data.", FailureKind.MALFORMED_RESPONSE)

    def _fetch_live_models(self, api_key: str) -> Optional[List[str]]:
        data = self._decode_json(self.transport.get(MODELS_URL, headers=self._auth(api_key), timeout=self.timeout))
        return [
            entry["id"]
            for entry in data.get("data") or []
            if isinstance(entry, dict) and isinstance(entry.get("id"), str)
        ]
