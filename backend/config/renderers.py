from __future__ import annotations

from rest_framework.renderers import JSONRenderer

_ENVELOPE_KEYS = frozenset({"data", "meta"})


class EnvelopeJSONRenderer(JSONRenderer):
    """
    Wrap successful responses as `{"data": ...}`.

    Error bodies come from `config.exception_handler` already shaped as
    `{"error": ...}`; paginated bodies already carry `data`/`meta`.
    """

    def render(self, data, accepted_media_type=None, renderer_context=None):
        response = (renderer_context or {}).get("response")
        if (response is not None and response.status_code >= 400) or self._is_enveloped(data):
            return super().render(data, accepted_media_type, renderer_context)
        return super().render({"data": data}, accepted_media_type, renderer_context)

    @staticmethod
    def _is_enveloped(data) -> bool:
        return isinstance(data, dict) and "data" in data and set(data).issubset(_ENVELOPE_KEYS)
