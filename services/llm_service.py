from typing import Optional

from google import genai
from google.genai import errors, types

from utils.logger import get_logger

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 512


class GeminiNotConfigured(Exception):
    pass


class GeminiApiError(Exception):
    """Gemini answered with an error status."""

    def __init__(self, status, detail):
        super().__init__(detail)
        self.status = status
        self.detail = detail


def build_gemini_contents(messages: list[dict]) -> list[dict]:
    """Chat-style messages to Gemini contents.

    Gemini has no system role here, so the first system message becomes a
    leading user turn and assistant turns become `model`.
    """
    system = next((m for m in messages if m.get('role') == 'system'), None)
    contents = [
        {'role': 'model' if m.get('role') == 'assistant' else 'user', 'parts': [{'text': m.get('content') or ''}]}
        for m in messages if m.get('role') != 'system'
    ]
    if system is not None:
        contents.insert(0, {'role': 'user', 'parts': [{'text': system.get('content') or ''}]})
    return contents


def image_part(data: bytes, mime_type: str):
    return types.Part.from_bytes(data=data, mime_type=mime_type)


class LLMService:
    def __init__(self, api_key: Optional[str], default_model: str):
        self.api_key = api_key
        self.default_model = default_model
        self._client = None
        self.logger = get_logger()

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    @property
    def client(self):
        if not self.api_key:
            raise GeminiNotConfigured('Gemini API key not set')
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def generate_text(self, contents, model: Optional[str] = None,
                      temperature: float = DEFAULT_TEMPERATURE,
                      max_output_tokens: int = DEFAULT_MAX_TOKENS) -> str:
        model = model or self.default_model
        truncated = str(contents)[:200]
        self.logger.info(f"Calling Gemini {model}: '{truncated}'")
        try:
            response = self.client.models.generate_content(
                model=model,
                contents=contents,
                config=types.GenerateContentConfig(
                    temperature=temperature, max_output_tokens=max_output_tokens
                ),
            )
        except errors.APIError as err:
            raise GeminiApiError(err.code, err.message or str(err))
        return response.text or ''

    def chat(self, messages: list[dict], model: Optional[str] = None,
             temperature: float = DEFAULT_TEMPERATURE, max_tokens: int = DEFAULT_MAX_TOKENS) -> dict:
        model = model or self.default_model
        text = self.generate_text(build_gemini_contents(messages), model, temperature, max_tokens)
        return {'content': text, 'model': model}
