"""Bounded tool-calling loop for one agent."""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

from .agents import CREATIVE_SYSTEM, MAX_TURNS_SENTINEL
from .providers import AdapterFactory
from .schemas import AgentRunResult, ConversationMessage, Credential, ProviderTurn, ToolCall, ToolOutcome
from .tools import ToolExecutor

logger = logging.getLogger("uvicorn.error")

MAX_TURNS = 5

T = TypeVar("T")
ToolStartHook = Callable[[str, Dict[str, Any]], Any]
ToolEndHook = Callable[[str, Dict[str, Any], Any], Any]


class RunAborted(Exception):
    pass


class CancelSignal:
    """Cooperative cancellation shared by everything one batch starts."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RunAborted()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable`, cancelling it and raising RunAborted if the signal fires first."""
        task = asyncio.ensure_future(awaitable)
        if self._event.is_set():
            task.cancel()
            raise RunAborted()
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            interrupted = not task.done()
            if interrupted:
                task.cancel()
                # Let the cancelled call unwind before reporting the abort.
                await asyncio.gather(task, return_exceptions=True)
        if interrupted or task.cancelled():
            raise RunAborted()
        return task.result()


async def _call_hook(hook: Optional[Callable[..., Any]], *args: Any) -> None:
    if hook is None:
        return
    try:
        result = hook(*args)
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.exception("Tool hook failed")


class AgentOrchestrator:
    def __init__(self, executor: ToolExecutor, adapters: AdapterFactory, max_turns: int = MAX_TURNS):
        self.executor = executor
        self.adapters = adapters
        self.max_turns = max_turns

    async def send_message(
        self,
        credential: Credential,
        model: str,
        system_instruction: str,
        history: Sequence[ConversationMessage],
        new_message: str,
        images: Sequence[str] = (),
        on_tool_start: Optional[ToolStartHook] = None,
        on_tool_end: Optional[ToolEndHook] = None,
        signal: Optional[CancelSignal] = None,
        temperature: Optional[float] = None,
    ) -> AgentRunResult:
        signal = signal or CancelSignal()
        rounds = 0
        label = f"{credential.provider}/{model}"
        try:
            signal.raise_if_cancelled()
            adapter = self.adapters.create(credential, model, system_instruction, history, temperature=temperature)
            logger.debug("%s: idle -> awaiting_response", label)
            turn: ProviderTurn = await signal.guard(adapter.send_user(new_message, images))
            rounds = 1
            while True:
                if not turn.tool_calls:
                    logger.debug("%s: awaiting_response -> done after %d round-trips", label, rounds)
                    return AgentRunResult(status="done", text=turn.text, turns=rounds, images=turn.images)
                logger.debug("%s: awaiting_response -> executing_tools (%d calls)", label, len(turn.tool_calls))
                outcomes = await self._dispatch(turn.tool_calls, on_tool_start, on_tool_end, signal)
                signal.raise_if_cancelled()
                if rounds >= self.max_turns:
                    logger.info("%s: turn ceiling of %d reached", label, self.max_turns)
                    return AgentRunResult(status="done", text=MAX_TURNS_SENTINEL, turns=rounds)
                turn = await signal.guard(adapter.send_tool_results(outcomes))
                rounds += 1
        except RunAborted:
            logger.debug("%s: aborted after %d round-trips", label, rounds)
            return AgentRunResult(status="aborted", turns=rounds)
        except Exception as exc:
            logger.warning("%s: provider call failed: %s", label, exc)
            return AgentRunResult(status="failed", turns=rounds, error=str(exc) or exc.__class__.__name__)

    async def _dispatch(
        self,
        calls: List[ToolCall],
        on_tool_start: Optional[ToolStartHook],
        on_tool_end: Optional[ToolEndHook],
        signal: CancelSignal,
    ) -> List[ToolOutcome]:
        signal.raise_if_cancelled()

        async def run_one(call: ToolCall) -> ToolOutcome:
            await _call_hook(on_tool_start, call.name, call.args)
            result = await self.executor.execute(call.name, call.args)
            await _call_hook(on_tool_end, call.name, call.args, result)
            return ToolOutcome(call=call, result=result)

        return list(await asyncio.gather(*(run_one(call) for call in calls)))

    async def send_creative(
        self,
        credential: Credential,
        model: str,
        history: Sequence[ConversationMessage],
        message: str,
        images: Sequence[str] = (),
        signal: Optional[CancelSignal] = None,
        temperature: Optional[float] = None,
    ) -> AgentRunResult:
        """One tool-free round-trip; image-capable models may return inline images."""
        signal = signal or CancelSignal()
        try:
            signal.raise_if_cancelled()
            adapter = self.adapters.create(
                credential, model, CREATIVE_SYSTEM, history, temperature=temperature, with_tools=False
            )
            turn = await signal.guard(adapter.send_user(message, images))
        except RunAborted:
            return AgentRunResult(status="aborted")
        except Exception as exc:
            logger.warning("Creative request to %s failed: %s", credential.provider, exc)
            return AgentRunResult(status="failed", turns=1, error=str(exc) or exc.__class__.__name__)
        return AgentRunResult(status="done", text=turn.text, turns=1, images=turn.images)
