import logging
from typing import Dict, Optional, Sequence

from google.genai import types

from .agents import PLANNER_SYSTEM, build_plan_prompt
from .json_recovery import first_json_object
from .llm import ChatCompletionsClient
from .providers import GeminiClientFactory, default_gemini_client
from .schemas import AgentConfig, Credential

logger = logging.getLogger("uvicorn.error")


class PlanningCoordinator:
    """Asks one model to split a request into per-agent instructions."""

    def __init__(
        self,
        http_client: ChatCompletionsClient,
        gemini_client_factory: GeminiClientFactory = default_gemini_client,
    ):
        self.http_client = http_client
        self.gemini_client_factory = gemini_client_factory

    async def generate_plan(
        self,
        credential: Credential,
        model: str,
        agents: Sequence[AgentConfig],
        user_message: str,
    ) -> Optional[Dict[str, str]]:
        prompt = build_plan_prompt(user_message, agents)
        try:
            if credential.provider == "google":
                raw = await self._ask_gemini(credential, model, prompt)
            else:
                raw = await self._ask_openai(credential, model, prompt)
        except Exception as exc:
            logger.warning("Plan generation via %s failed: %s", credential.provider, exc)
            return None
        plan = first_json_object(raw or "")
        if plan is None:
            logger.warning("Planner reply contained no JSON object")
            return None
        known = {a.id for a in agents}
        cleaned = {k: v.strip() for k, v in plan.items() if k in known and isinstance(v, str) and v.strip()}
        return cleaned or None

    async def _ask_gemini(self, credential: Credential, model: str, prompt: str) -> str:
        client = self.gemini_client_factory(credential.secret)
        response = await client.aio.models.generate_content(
            model=model,
            contents=prompt,
            config=types.GenerateContentConfig(response_mime_type="application/json"),
        )
        return response.text or ""

    async def _ask_openai(self, credential: Credential, model: str, prompt: str) -> str:
        data = await self.http_client.chat_completion(
            credential.provider,
            credential.secret,
            model,
            [{"role": "system", "content": PLANNER_SYSTEM}, {"role": "user", "content": prompt}],
            response_format={"type": "json_object"},
        )
        choices = data.get("choices") or []
        if not choices:
            return ""
        return (choices[0].get("message") or {}).get("content") or ""
