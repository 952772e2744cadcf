"""
Agent Loop Controller.

One call to ``AgentLoopController.run`` drives a turn through

    Requesting -> Streaming -> Deciding -> (ToolPhase -> Requesting) | done

until the model stops asking for tools, the iteration cap is reached, or the
turn is cancelled. The controller only mutates the session through
``MessageStore`` operations; partial output is written to the trailing
assistant placeholder as it streams.
"""

import dataclasses
import logging
from typing import Optional

from tabpilot.agents.exceptions import (
    ConfigurationError,
    ModelAPIError,
    ProtocolViolationError,
    TurnCancelledError,
)
from tabpilot.agents.memory import AssistantMessage, ToolMessage
from tabpilot.models.streaming import DecodedResponse, StreamDecoder, StreamState

from .context import EngineContext
from .execution.tool_calls import NormalizedCalls
from .execution.tool_executor import simulated_result
from .request_builder import build_messages, build_request_body
from .status.events import AssistantDeltaEvent, ErrorNoticeEvent, ExecutionStatusEvent
from .watchdog import CancellationToken

logger = logging.getLogger(__name__)

COMPLETED = "completed"
LOOP_LIMIT = "loop_limit"
CANCELLED = "cancelled"
FAILED = "failed"

CANCELLED_TOOL_RESULT = "Cancelled: the turn was stopped before this tool ran."


@dataclasses.dataclass
class LoopOutcome:
    status: str
    iterations: int = 0
    final_text: str = ""
    error: Optional[Exception] = None

    @property
    def success(self) -> bool:
        return self.status in (COMPLETED, LOOP_LIMIT)


class AgentLoopController:
    def __init__(self, ctx: EngineContext):
        self.ctx = ctx

    async def run(self, token: CancellationToken) -> LoopOutcome:
        ctx = self.ctx
        config = ctx.config
        iterations = 0
        final_text = ""

        try:
            config.require_api_key()
            while iterations < config.max_loops:
                token.raise_if_cancelled()
                iterations += 1
                logger.info(f"Loop iteration {iterations}/{config.max_loops}")

                removed = ctx.store.remove_dangling_tool_calls()
                if removed:
                    logger.warning(f"Removed {removed} message(s) breaking tool-call pairing")

                placeholder = ctx.store.last_message()
                if not isinstance(placeholder, AssistantMessage):
                    raise ProtocolViolationError(
                        "Trailing message is not an assistant placeholder",
                        last_role=getattr(placeholder, "role", None),
                    )

                messages = build_messages(ctx.store.messages(), config, ctx.clock)
                body = build_request_body(config, messages)
                logger.debug(f"Loop {iterations} payload: {messages}")

                response = await self._stream(body, placeholder, token)
                normalized = ctx.normalizer.normalize(response)
                final_text = response.text

                ctx.store.update_by_id(
                    placeholder.id,
                    {
                        "content": response.text,
                        "think": response.reasoning,
                        "tagged_reasoning": response.tagged_reasoning,
                        "tool_calls": normalized.calls or None,
                    },
                )
                await self._publish(placeholder.id, response.text, response.reasoning,
                                    collapse=response.tagged_reasoning or bool(response.text and response.reasoning),
                                    expand=bool(response.reasoning) and not response.text)

                if not normalized:
                    return LoopOutcome(COMPLETED, iterations, final_text)

                await self._run_tools(normalized, token)

                if iterations < config.max_loops:
                    ctx.store.append(AssistantMessage())

            logger.warning(f"Loop limit of {config.max_loops} iterations reached")
            return LoopOutcome(LOOP_LIMIT, iterations, final_text)

        except TurnCancelledError as e:
            logger.warning(f"Turn cancelled: {e.reason}")
            return LoopOutcome(CANCELLED, iterations, final_text, error=e)
        except ProtocolViolationError as e:
            logger.error(f"Agent loop halted: {e}")
            return LoopOutcome(FAILED, iterations, final_text, error=e)
        except (ModelAPIError, ConfigurationError) as e:
            logger.error(f"Agent error: {e}")
            await ctx.event_bus.emit(
                ErrorNoticeEvent(
                    session_id=ctx.session_id,
                    message=e.user_message,
                    retryable=True,
                    error_code=e.error_code,
                    details=e.to_dict(),
                )
            )
            return LoopOutcome(FAILED, iterations, final_text, error=e)

    async def _stream(
        self, body: dict, placeholder: AssistantMessage, token: CancellationToken
    ) -> DecodedResponse:
        store = self.ctx.store

        def on_event(state: StreamState) -> None:
            store.update_by_id(
                placeholder.id, {"content": state.text, "think": state.reasoning}, persist=False
            )

        decoder = StreamDecoder(on_event=on_event)
        iterator = self.ctx.transport.stream_chunks(body).__aiter__()
        try:
            while not decoder.done:
                try:
                    chunk = await token.guard(iterator.__anext__())
                except StopAsyncIteration:
                    break
                if decoder.feed(chunk):
                    state = decoder.state
                    await self._publish(placeholder.id, state.text, state.reasoning,
                                        collapse=state.collapse_reasoning,
                                        expand=state.expand_reasoning)
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()
        return decoder.finalize()

    async def _run_tools(self, normalized: NormalizedCalls, token: CancellationToken) -> None:
        ctx = self.ctx
        session = ctx.store.active_session
        calls = normalized.calls

        if normalized.synthetic and ctx.config.simulate_extracted_calls:
            logger.info("Recording simulated results for text-extracted tool calls")
            for call in calls:
                ctx.store.append(
                    ToolMessage(content=simulated_result(call), tool_call_id=call.id, name=call.name)
                )
            return

        await ctx.event_bus.emit(
            ExecutionStatusEvent(session_id=session.id, visible=True, text="Executing tools...")
        )
        try:
            for index, call in enumerate(calls):
                try:
                    token.raise_if_cancelled()
                    result = await ctx.executor.safe_execute(
                        call,
                        session.approval,
                        enabled=ctx.config.enabled_tools,
                        token=token,
                        session_id=session.id,
                    )
                except TurnCancelledError:
                    # Keep every tool_call_id answered so the history stays replayable
                    for pending in calls[index:]:
                        ctx.store.append(
                            ToolMessage(
                                content=CANCELLED_TOOL_RESULT,
                                tool_call_id=pending.id,
                                name=pending.name,
                            )
                        )
                    raise
                ctx.store.append(ToolMessage(content=result, tool_call_id=call.id, name=call.name))
        finally:
            await ctx.event_bus.emit(ExecutionStatusEvent(session_id=session.id, visible=False))

    async def _publish(self, message_id: str, content: str, think: str, collapse: bool, expand: bool) -> None:
        await self.ctx.event_bus.emit(
            AssistantDeltaEvent(
                session_id=self.ctx.session_id,
                message_id=message_id,
                content=content,
                think=think,
                collapse_think=collapse,
                expand_think=expand,
            )
        )
