"""Adapters that map each provider wire protocol onto one turn-based contract.

The orchestrator only ever calls ``send_user`` once and then
``send_tool_results`` for every further round-trip; whatever per-provider
conversation state is needed (a native chat object, or a flat message list)
lives inside the adapter.
"""

import base64
import binascii
import json
import uuid
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Sequence

from google import genai
from google.genai import types

from .llm import ChatCompletionsClient, ProviderError
from .schemas import ConversationMessage, Credential, ProviderTurn, ToolCall, ToolOutcome
from .tools import ToolRegistry

GeminiClientFactory = Callable[[str], Any]


def default_gemini_client(api_key: str) -> genai.Client:
    return genai.Client(api_key=api_key)


def parse_data_url(url: str) -> Optional[types.Blob]:
    if not url.startswith("data:") or "," not in url:
        return None
    header, payload = url[5:].split(",", 1)
    mime_type = header.split(";", 1)[0] or "application/octet-stream"
    try:
        data = base64.b64decode(payload)
    except (binascii.Error, ValueError):
        return None
    return types.Blob(mime_type=mime_type, data=data)


def to_data_url(mime_type: str, data: bytes) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def parse_tool_arguments(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _unique_id(candidate: Optional[str], seen: set, name: str) -> str:
    call_id = candidate or f"call_{name}_{uuid.uuid4().hex[:8]}"
    while call_id in seen:
        call_id = f"{call_id}_{uuid.uuid4().hex[:4]}"
    seen.add(call_id)
    return call_id


class ChatAdapter(ABC):
    @abstractmethod
    async def send_user(self, text: str, images: Sequence[str] = ()) -> ProviderTurn: ...

    @abstractmethod
    async def send_tool_results(self, outcomes: Sequence[ToolOutcome]) -> ProviderTurn: ...


class OpenAIChatAdapter(ChatAdapter):
    def __init__(
        self,
        client: ChatCompletionsClient,
        provider: str,
        api_key: str,
        model: str,
        system_instruction: str,
        history: Sequence[ConversationMessage],
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ):
        self.client = client
        self.provider = provider
        self.api_key = api_key
        self.model = model
        self.tools = tools
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.messages: List[Dict[str, Any]] = [{"role": "system", "content": system_instruction}]
        for msg in history:
            self.messages.append({"role": "assistant" if msg.role == "model" else "user", "content": msg.content})

    async def send_user(self, text: str, images: Sequence[str] = ()) -> ProviderTurn:
        if images:
            content: Any = [{"type": "text", "text": text}] + [
                {"type": "image_url", "image_url": {"url": url}} for url in images
            ]
        else:
            content = text
        self.messages.append({"role": "user", "content": content})
        return await self._complete()

    async def send_tool_results(self, outcomes: Sequence[ToolOutcome]) -> ProviderTurn:
        for outcome in outcomes:
            self.messages.append(
                {
                    "role": "tool",
                    "tool_call_id": outcome.call.call_id,
                    "content": json.dumps(outcome.result, default=str),
                }
            )
        return await self._complete()

    async def _complete(self) -> ProviderTurn:
        data = await self.client.chat_completion(
            self.provider,
            self.api_key,
            self.model,
            self.messages,
            tools=self.tools,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        choices = data.get("choices") or []
        if not choices:
            raise ProviderError(f"Provider Error: empty response from {self.provider}")
        message = choices[0].get("message") or {}
        raw_calls = message.get("tool_calls") or []
        calls: List[ToolCall] = []
        if raw_calls:
            seen: set = set()
            echoed = []
            for raw in raw_calls:
                function = raw.get("function") or {}
                name = str(function.get("name") or "")
                call_id = _unique_id(raw.get("id"), seen, name)
                calls.append(ToolCall(name=name, args=parse_tool_arguments(function.get("arguments")), call_id=call_id))
                echoed.append({**raw, "id": call_id, "type": raw.get("type") or "function"})
            self.messages.append({"role": "assistant", "content": message.get("content"), "tool_calls": echoed})
        else:
            self.messages.append({"role": "assistant", "content": message.get("content") or ""})
        return ProviderTurn(text=message.get("content") or "", tool_calls=calls)


class GeminiChatAdapter(ChatAdapter):
    def __init__(
        self,
        client: Any,
        model: str,
        system_instruction: str,
        history: Sequence[ConversationMessage],
        tools: Optional[List[types.Tool]] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ):
        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            temperature=temperature,
            max_output_tokens=max_tokens,
            tools=tools or None,
            automatic_function_calling=types.AutomaticFunctionCallingConfig(disable=True) if tools else None,
        )
        contents = [
            types.Content(role="model" if m.role == "model" else "user", parts=[types.Part.from_text(text=m.content)])
            for m in history
            if m.content
        ]
        self.chat = client.aio.chats.create(model=model, history=contents, config=config)

    async def send_user(self, text: str, images: Sequence[str] = ()) -> ProviderTurn:
        parts = [types.Part.from_text(text=text)]
        for url in images:
            blob = parse_data_url(url)
            if blob is not None:
                parts.append(types.Part(inline_data=blob))
        response = await self.chat.send_message(parts)
        return self._to_turn(response)

    async def send_tool_results(self, outcomes: Sequence[ToolOutcome]) -> ProviderTurn:
        parts = [
            types.Part(
                function_response=types.FunctionResponse(
                    id=outcome.call.call_id,
                    name=outcome.call.name,
                    response={"result": outcome.result},
                )
            )
            for outcome in outcomes
        ]
        response = await self.chat.send_message(parts)
        return self._to_turn(response)

    def _to_turn(self, response: Any) -> ProviderTurn:
        texts: List[str] = []
        images: List[str] = []
        calls: List[ToolCall] = []
        seen: set = set()
        candidates = getattr(response, "candidates", None) or []
        content = getattr(candidates[0], "content", None) if candidates else None
        for part in getattr(content, "parts", None) or []:
            call = getattr(part, "function_call", None)
            if call is not None:
                name = call.name or ""
                calls.append(
                    ToolCall(name=name, args=dict(call.args or {}), call_id=_unique_id(getattr(call, "id", None), seen, name))
                )
                continue
            inline = getattr(part, "inline_data", None)
            if inline is not None and getattr(inline, "data", None):
                images.append(to_data_url(inline.mime_type or "image/png", inline.data))
                continue
            if getattr(part, "text", None) and not getattr(part, "thought", False):
                texts.append(part.text)
        return ProviderTurn(text="".join(texts), tool_calls=calls, images=images)


class AdapterFactory:
    """Builds the right adapter for a credential's provider."""

    def __init__(
        self,
        http_client: ChatCompletionsClient,
        registry: Optional[ToolRegistry] = None,
        gemini_client_factory: GeminiClientFactory = default_gemini_client,
        max_output_tokens: Optional[int] = None,
    ):
        self.http_client = http_client
        self.registry = registry or ToolRegistry()
        self.gemini_client_factory = gemini_client_factory
        self.max_output_tokens = max_output_tokens

    def create(
        self,
        credential: Credential,
        model: str,
        system_instruction: str,
        history: Sequence[ConversationMessage],
        temperature: Optional[float] = None,
        with_tools: bool = True,
    ) -> ChatAdapter:
        if credential.provider == "google":
            return GeminiChatAdapter(
                self.gemini_client_factory(credential.secret),
                model,
                system_instruction,
                history,
                tools=self.registry.gemini_tools() if with_tools else None,
                temperature=temperature,
                max_tokens=self.max_output_tokens,
            )
        # Raises ProviderError for providers without a chat endpoint.
        self.http_client.base_url(credential.provider)
        return OpenAIChatAdapter(
            self.http_client,
            credential.provider,
            credential.secret,
            model,
            system_instruction,
            history,
            tools=self.registry.openai_tools() if with_tools else None,
            temperature=temperature,
            max_tokens=self.max_output_tokens,
        )
