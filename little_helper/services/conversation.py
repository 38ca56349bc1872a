"""
Conversation turns: route to the selected backend and act on proposed commands.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from little_helper.exceptions import BackendError
from little_helper.models.chat import ChatMessage, ChatResponse, ChatRole
from little_helper.models.command import CommandOutcome, CommandStatusResponse
from little_helper.services.chat_backends import ChatBackend
from little_helper.services.command_extraction import (
    AGENT_SYSTEM_PROMPT,
    clean_response,
    extract_commands,
)
from little_helper.services.command_pipeline import CommandPipeline
from little_helper.services.provider_router import ProviderRouter

logger = logging.getLogger(__name__)


def format_error_message(error: Exception | str) -> str:
    """Friendly text for a failed backend call, shown in the chat."""
    text = str(error)
    lowered = text.lower()

    if any(s in lowered for s in ("unauthorized", "401", "invalid api key", "authentication")):
        return (
            "I couldn't connect to the AI service - there may be an issue with the API key "
            f"or sign-in.\n\nError: {text}\n\nIf this keeps happening, please let the team know!"
        )
    if any(s in lowered for s in ("rate limit", "429", "too many requests")):
        return (
            "The AI service is temporarily busy. Please wait a moment and try again."
            f"\n\nError: {text}"
        )
    if any(
        s in lowered
        for s in ("connection", "connect", "network", "timeout", "timed out", "dns", "could not resolve")
    ):
        return (
            "I'm having trouble connecting to the AI service. Please check your network "
            f"connection.\n\nError: {text}"
        )
    if any(s in lowered for s in ("quota", "billing", "insufficient")):
        return (
            "The AI service quota may have been exceeded. Please let the team know!"
            f"\n\nError: {text}"
        )
    return (
        f"Sorry, I ran into an issue. Here's what happened:\n\n{text}\n\n"
        "If this keeps happening, try restarting the app or checking your internet connection."
    )


class ConversationService:
    """
    Runs one conversation turn against the selected backend.

    The routing selection is captured once at the start of a turn; a backend
    switch made while the turn is in flight applies to the next turn only.
    Commands that finish without user input have their output fed back to
    the model, up to `max_iterations` backend calls per turn.
    """

    def __init__(
        self,
        router: ProviderRouter,
        backends: ChatBackend,
        pipeline: CommandPipeline,
        working_directory: str,
        max_iterations: int = 5,
    ) -> None:
        self.router = router
        self.backends = backends
        self.pipeline = pipeline
        self.working_directory = working_directory
        self.max_iterations = max_iterations

    async def send(self, conversation_id: str, messages: Sequence[ChatMessage]) -> ChatResponse:
        """
        Continue a conversation.

        Raises:
            RoutingConflict: No backend is selected, or its sign-in expired and
                could not be refreshed (nothing is sent)
            BackendError: The captured backend failed (no fallback is attempted)
        """
        selection = self.router.current()
        history: list[ChatMessage] = [
            ChatMessage(role=ChatRole.SYSTEM, content=AGENT_SYSTEM_PROMPT),
            *(m for m in messages if m.role is not ChatRole.SYSTEM),
        ]

        outcomes: list[CommandOutcome] = []
        pending: list[str] = []
        raw_reply = ""
        iterations = 0

        while iterations < self.max_iterations:
            iterations += 1
            selection = await self.router.ensure_valid(selection)
            try:
                raw_reply = await self.backends.generate(selection, history)
            except BackendError as e:
                logger.warning(
                    "Chat backend call failed",
                    extra={
                        "conversation_id": conversation_id,
                        "provider_id": selection.provider_id,
                        "error_type": type(e).__name__,
                    },
                )
                raise

            commands = extract_commands(raw_reply)
            if not commands:
                break

            feedback: list[str] = []
            for command in commands:
                outcome = self.pipeline.submit(
                    conversation_id, command, working_directory=self.working_directory
                )
                if pending:
                    # queued behind a request that is waiting on the user
                    outcomes.append(outcome)
                    pending.append(outcome.request.request_id)
                    continue
                outcome = await self.pipeline.wait_unblocked(outcome.request.request_id)
                outcomes.append(outcome)
                if outcome.state.is_terminal:
                    feedback.append(outcome.message_for_model())
                else:
                    pending.append(outcome.request.request_id)

            if pending or not feedback:
                break
            history.append(ChatMessage(role=ChatRole.ASSISTANT, content=raw_reply))
            history.append(ChatMessage(role=ChatRole.USER, content="\n\n".join(feedback)))

        logger.info(
            "Conversation turn finished",
            extra={
                "conversation_id": conversation_id,
                "provider_id": selection.provider_id,
                "iterations": iterations,
                "commands": len(outcomes),
                "pending": len(pending),
            },
        )
        return ChatResponse(
            conversation_id=conversation_id,
            provider_id=selection.provider_id,
            model_id=selection.model_id,
            reply=clean_response(raw_reply),
            raw_reply=raw_reply,
            commands=[CommandStatusResponse.from_outcome(o) for o in outcomes],
            pending_request_ids=pending,
            iterations=iterations,
        )
