"""Runs one user message across every configured agent of a session."""

import asyncio
import logging
import time
from typing import Dict, List, Optional, Sequence

from .agents import DEFAULT_PLAN_INSTRUCTION, PLANNING_INSTRUCTION_PREFIX, build_system_instruction
from .config import AppSettings
from .context import limit_history, prune_messages
from .db import Database
from .events import EventBus
from .orchestrator import AgentOrchestrator, CancelSignal, RunAborted
from .planning import PlanningCoordinator
from .schemas import AgentConfig, AgentRunResult, ChatMode, ConversationMessage, Credential
from .workspace import Workspace

logger = logging.getLogger("uvicorn.error")


def _preview(value: object, limit: int = 500) -> object:
    if isinstance(value, str) and len(value) > limit:
        return value[:limit] + "..."
    return value


class SessionRunner:
    def __init__(
        self,
        settings: AppSettings,
        db: Database,
        bus: EventBus,
        workspace: Workspace,
        orchestrator: AgentOrchestrator,
        planner: PlanningCoordinator,
    ):
        self.settings = settings
        self.db = db
        self.bus = bus
        self.workspace = workspace
        self.orchestrator = orchestrator
        self.planner = planner
        self.signals: Dict[str, CancelSignal] = {}

    def stop(self, session_id: str) -> bool:
        signal = self.signals.get(session_id)
        if signal is None or signal.cancelled:
            return False
        signal.cancel()
        return True

    async def send(
        self,
        session_id: str,
        agents: Sequence[AgentConfig],
        credentials: Sequence[Credential],
        message: str,
        images: Sequence[str] = (),
        mode: ChatMode = "code",
    ) -> Dict[str, AgentRunResult]:
        previous = self.signals.get(session_id)
        if previous is not None:
            previous.cancel()
        signal = CancelSignal()
        self.signals[session_id] = signal
        try:
            return await self._run_batch(session_id, agents, credentials, message, list(images), mode, signal)
        finally:
            if self.signals.get(session_id) is signal:
                del self.signals[session_id]

    async def _run_batch(
        self,
        session_id: str,
        agents: Sequence[AgentConfig],
        credentials: Sequence[Credential],
        message: str,
        images: List[str],
        mode: ChatMode,
        signal: CancelSignal,
    ) -> Dict[str, AgentRunResult]:
        by_id = {c.id: c for c in credentials}
        runnable: List[AgentConfig] = []
        for agent in agents:
            if agent.credential_id in by_id:
                runnable.append(agent)
            else:
                await self.bus.emit(
                    session_id, "agent_skipped", {"agent_id": agent.id, "reason": "missing credential"}
                )
        if not runnable:
            return {}
        await self.bus.emit(
            session_id, "batch_started", {"agents": [a.id for a in runnable], "mode": mode}
        )
        logger.info("Session %s: batch started for %d agents", session_id, len(runnable))

        histories: Dict[str, List[ConversationMessage]] = {}
        user_message = ConversationMessage(role="user", content=message, images=images, timestamp=time.time())
        for agent in runnable:
            histories[agent.id] = await self.db.list_agent_messages(session_id, agent.id)
            await self.db.add_message(session_id, agent.id, user_message)

        plan: Optional[Dict[str, str]] = None
        if mode == "code" and len(runnable) > 1:
            lead = runnable[0]
            try:
                plan = await signal.guard(
                    self.planner.generate_plan(by_id[lead.credential_id], lead.model, runnable, message)
                )
            except RunAborted:
                plan = None
            if plan:
                await self.bus.emit(session_id, "plan_ready", {"planner": lead.id, "plan": plan})
                for agent in runnable:
                    instruction = plan.get(agent.id) or DEFAULT_PLAN_INSTRUCTION
                    await self.db.add_message(
                        session_id,
                        agent.id,
                        ConversationMessage(role="system", content=f"{PLANNING_INSTRUCTION_PREFIX}{instruction}"),
                    )

        async def run_agent(agent: AgentConfig) -> AgentRunResult:
            credential = by_id[agent.credential_id]
            history = limit_history(histories[agent.id], agent.max_context_history)
            history = prune_messages(history, self.settings.context_budget_for(credential.provider))
            prompt = (plan or {}).get(agent.id) or message

            async def on_tool_start(name: str, args: dict) -> None:
                await self.bus.emit(session_id, "tool_start", {"agent_id": agent.id, "tool": name, "args": args})

            async def on_tool_end(name: str, args: dict, result: object) -> None:
                await self.bus.emit(
                    session_id, "tool_end", {"agent_id": agent.id, "tool": name, "result": _preview(result)}
                )

            if mode == "creative":
                result = await self.orchestrator.send_creative(
                    credential, agent.model, history, prompt, images, signal=signal, temperature=agent.temperature
                )
            else:
                instruction = build_system_instruction(agent, self.workspace.environment_block(agent))
                result = await self.orchestrator.send_message(
                    credential,
                    agent.model,
                    instruction,
                    history,
                    prompt,
                    images,
                    on_tool_start=on_tool_start,
                    on_tool_end=on_tool_end,
                    signal=signal,
                    temperature=agent.temperature,
                )
            await self._record(session_id, agent, result)
            return result

        results = await asyncio.gather(*(run_agent(agent) for agent in runnable))
        outcome = {agent.id: result for agent, result in zip(runnable, results)}
        await self.bus.emit(
            session_id, "batch_finished", {"statuses": {k: v.status for k, v in outcome.items()}}
        )
        return outcome

    async def _record(self, session_id: str, agent: AgentConfig, result: AgentRunResult) -> None:
        if result.status == "done":
            await self.db.add_message(
                session_id,
                agent.id,
                ConversationMessage(role="model", content=result.text, images=result.images, timestamp=time.time()),
            )
            await self.bus.emit(session_id, "agent_done", {"agent_id": agent.id, "turns": result.turns})
        elif result.status == "failed":
            await self.db.add_message(
                session_id,
                agent.id,
                ConversationMessage(role="model", content=f"Error: {result.error}", timestamp=time.time()),
            )
            await self.bus.emit(session_id, "agent_failed", {"agent_id": agent.id, "error": result.error})
        else:
            await self.bus.emit(session_id, "agent_aborted", {"agent_id": agent.id, "turns": result.turns})

    async def messages(self, session_id: str) -> List[dict]:
        return await self.db.list_session_messages(session_id)
