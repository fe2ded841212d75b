import logging
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger("uvicorn.error")

OPENAI_COMPATIBLE_ENDPOINTS: Dict[str, str] = {
    "groq": "https://api.groq.com/openai/v1",
    "mistral": "https://api.mistral.ai/v1",
    "openrouter": "https://openrouter.ai/api/v1",
    "sambanova": "https://api.sambanova.ai/v1",
    "cerebras": "https://api.cerebras.ai/v1",
    "deepseek": "https://api.deepseek.com",
    "pollinations": "https://text.pollinations.ai/openai",
}
GOOGLE_MODELS_URL = "https://generativelanguage.googleapis.com/v1beta/models"
PLACEHOLDER_KEY = "dummy"
STATIC_MODEL_PROVIDERS = {"pollinations", "puter", "huggingface"}

FALLBACK_MODELS: Dict[str, List[str]] = {
    "google": ["gemini-2.5-flash", "gemini-3-pro-preview", "gemini-2.5-flash-image", "gemini-2.0-flash-exp"],
    "groq": ["llama-3.3-70b-versatile", "llama-3.1-70b-versatile", "llama-3.1-8b-instant", "gemma2-9b-it"],
    "huggingface": [
        "meta-llama/Meta-Llama-3-8B-Instruct",
        "mistralai/Mistral-7B-Instruct-v0.2",
        "microsoft/Phi-3-mini-4k-instruct",
    ],
    "mistral": ["open-mistral-7b", "open-mixtral-8x7b", "mistral-small-latest", "mistral-large-latest"],
    "openrouter": [
        "google/gemini-2.0-flash-exp:free",
        "meta-llama/llama-3.1-8b-instruct:free",
        "mistralai/mistral-7b-instruct:free",
        "nousresearch/hermes-3-llama-3.1-405b:free",
    ],
    "puter": ["gpt-4o", "claude-3-5-sonnet", "gemini-1.5-pro", "llama-3-70b"],
    "sambanova": ["Meta-Llama-3.1-405B-Instruct", "Meta-Llama-3.1-70B-Instruct", "Meta-Llama-3.1-8B-Instruct"],
    "cerebras": ["llama3.1-70b", "llama3.1-8b"],
    "deepseek": ["deepseek-chat", "deepseek-coder"],
    "pollinations": ["openai", "claude", "mistral", "llama", "searchgpt"],
}


class ProviderError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ChatCompletionsClient:
    """HTTP client for every OpenAI-compatible chat completions provider."""

    def __init__(
        self,
        timeout: float = 120.0,
        referer: str = "http://localhost:8000",
        title: str = "Code Studio",
        max_output_tokens: Optional[int] = None,
    ):
        self.referer = referer
        self.title = title
        self.max_output_tokens = max_output_tokens
        self.client = httpx.AsyncClient(
            timeout=timeout,
            limits=httpx.Limits(max_connections=32, max_keepalive_connections=16),
        )

    def base_url(self, provider: str) -> str:
        base = OPENAI_COMPATIBLE_ENDPOINTS.get(provider)
        if base is None:
            raise ProviderError(f"Provider not implemented: {provider}")
        return base

    def _headers(self, provider: str, api_key: str) -> Dict[str, str]:
        key = api_key or (PLACEHOLDER_KEY if provider == "pollinations" else "")
        headers = {"Content-Type": "application/json", "Authorization": f"Bearer {key}"}
        if provider == "openrouter":
            headers["HTTP-Referer"] = self.referer
            headers["X-Title"] = self.title
        return headers

    async def chat_completion(
        self,
        provider: str,
        api_key: str,
        model: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        response_format: Optional[dict] = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url(provider)}/chat/completions"
        payload: Dict[str, Any] = {"model": model, "messages": messages}
        if tools:
            payload["tools"] = tools
        if temperature is not None:
            payload["temperature"] = temperature
        max_tokens = max_tokens or self.max_output_tokens
        if max_tokens:
            payload["max_tokens"] = max_tokens
        if response_format:
            payload["response_format"] = response_format
        resp = await self.client.post(url, json=payload, headers=self._headers(provider, api_key))
        if resp.status_code >= 400:
            raise ProviderError(f"Provider Error: {resp.text}", status_code=resp.status_code)
        return resp.json()

    async def list_models(self, provider: str, api_key: str) -> List[str]:
        if provider == "google":
            resp = await self.client.get(GOOGLE_MODELS_URL, params={"key": api_key})
            resp.raise_for_status()
            data = resp.json()
            models = data.get("models") if isinstance(data, dict) else None
            return [
                str(m.get("name", "")).replace("models/", "", 1)
                for m in (models or [])
                if isinstance(m, dict) and "generateContent" in (m.get("supportedGenerationMethods") or [])
            ]
        resp = await self.client.get(f"{self.base_url(provider)}/models", headers=self._headers(provider, api_key))
        resp.raise_for_status()
        data = resp.json()
        items = data.get("data") if isinstance(data, dict) else data
        return [str(m.get("id")) for m in (items or []) if isinstance(m, dict) and m.get("id")]

    async def fetch_available_models(self, provider: str, api_key: str) -> List[str]:
        """Live model list, or the static fallback list when the provider cannot be queried."""
        fallback = list(FALLBACK_MODELS.get(provider, []))
        if provider in STATIC_MODEL_PROVIDERS or not api_key:
            return fallback
        try:
            models = await self.list_models(provider, api_key)
        except (httpx.HTTPError, ProviderError, ValueError) as exc:
            logger.warning("Model listing failed for %s, using fallback list: %s", provider, exc)
            return fallback
        if not models:
            logger.warning("Model listing for %s returned nothing, using fallback list", provider)
            return fallback
        return sorted(models)

    async def close(self) -> None:
        if not self.client.is_closed:
            await self.client.aclose()
