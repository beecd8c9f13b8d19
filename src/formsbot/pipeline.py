"""Submission pipeline: from a button press to a published result.

The pipeline is platform-neutral. It talks to the user through a
TriggerInteraction and publishes through a Dispatcher; the Discord
implementations of both live in ``discord_bot``.

    idle -> checking_cooldown -> blocked
                              -> checking_form -> not_found
                                               -> misconfigured
                                               -> prompting -> cancelled
                                                            -> collected -> dispatched
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Literal, Protocol, Sequence

from .durations import format_duration
from .errors import TransportError
from .models import Form, FormRef, PromptSpec
from .state import CooldownTracker, FormStore, run_blocking

logger = logging.getLogger(__name__)


PipelineState = Literal[
    "idle",
    "checking_cooldown",
    "blocked",
    "checking_form",
    "not_found",
    "misconfigured",
    "prompting",
    "cancelled",
    "collected",
    "dispatched",
]

NOT_FOUND_MESSAGE = "This form no longer exists"
MISCONFIGURED_MESSAGE = "This form is not correctly configured"


class TriggerInteraction(Protocol):
    """The user-facing side of one trigger, as seen by the pipeline."""

    user_id: int
    display_name: str
    avatar_url: str | None

    async def reply(self, text: str) -> None:
        """Send a message only the acting user can see."""
        ...

    async def prompt(self, spec: PromptSpec) -> list[str] | None:
        """Show the prompt; return answers in line order, or None if dismissed."""
        ...

    async def acknowledge(self) -> None:
        """Privately acknowledge that a submission was received."""
        ...

    async def update_acknowledgement(self, text: str) -> None:
        ...


class Dispatcher(Protocol):
    """Creates private conversations and publishes results into them."""

    async def can_create_private_conversation(self, destination: int) -> bool:
        ...

    async def create_private_conversation(self, destination: int, title: str) -> Any:
        ...

    async def post(self, conversation: Any, message: "ComposedResult") -> None:
        ...

    async def grant_access(self, conversation: Any, user_id: int) -> None:
        ...

    def mention(self, conversation: Any) -> str:
        """Text that links to the conversation."""
        ...


@dataclass(frozen=True)
class ResultField:
    label: str
    value: str
    inline: bool = False


@dataclass(frozen=True)
class ComposedResult:
    """A published submission, independent of how the platform renders it."""

    title: str
    author_name: str
    author_icon_url: str | None = None
    content: str | None = None
    fields: tuple[ResultField, ...] = ()


@dataclass
class SubmissionOutcome:
    """Where a trigger ended up, plus what it produced."""

    state: PipelineState
    remaining: timedelta | None = None
    conversation: Any = None
    history: list[PipelineState] = field(default_factory=list)


def compose_result(form: Form, interaction: TriggerInteraction, answers: Sequence[str]) -> ComposedResult:
    """Lay out the answers: mention, description, then fields in form order."""
    content = None
    if form.mention is not None:
        content = f"{form.mention}\n"
    if form.description:
        content = (content or "") + form.description
    if content is not None:
        content = content.rstrip() or None

    return ComposedResult(
        title=form.title,
        author_name=interaction.display_name,
        author_icon_url=interaction.avatar_url,
        content=content,
        fields=tuple(
            ResultField(label=f.name, value=answer, inline=f.inline)
            for f, answer in zip(form.fields, answers)
        ),
    )


class SubmissionPipeline:
    """Runs one trigger at a time; holds no state between triggers."""

    def __init__(self, forms: FormStore, cooldowns: CooldownTracker, dispatcher: Dispatcher):
        self.forms = forms
        self.cooldowns = cooldowns
        self.dispatcher = dispatcher

    async def handle_trigger(self, form_ref: FormRef, interaction: TriggerInteraction) -> SubmissionOutcome:
        """Drive a trigger from the cooldown check to a published result.

        Raises:
            TransportError: if the store or the dispatcher fails
        """
        outcome = SubmissionOutcome(state="idle")

        def enter(state: PipelineState) -> None:
            outcome.history.append(state)
            outcome.state = state
            logger.debug(f"Form {form_ref.form_id} / user {interaction.user_id}: {state}")

        enter("checking_cooldown")
        remaining = await run_blocking(self.cooldowns.cooldown_remaining, form_ref, interaction.user_id)
        if remaining is not None and remaining.total_seconds() > 0:
            enter("blocked")
            outcome.remaining = remaining
            # Round up so a sub-second remainder never reads as "0s"
            wait = timedelta(seconds=math.ceil(remaining.total_seconds()))
            await interaction.reply(f"You can submit this form again in {format_duration(wait)}")
            return outcome

        enter("checking_form")
        form = await run_blocking(self.forms.get_form, form_ref)
        if form is None:
            enter("not_found")
            await interaction.reply(NOT_FOUND_MESSAGE)
            return outcome

        prompt = form.build_prompt()
        if prompt is None or not await self._can_dispatch(form):
            enter("misconfigured")
            await interaction.reply(MISCONFIGURED_MESSAGE)
            return outcome

        # Captured now so later edits to the form do not affect this submission
        cooldown = form.cooldown

        enter("prompting")
        answers = await interaction.prompt(prompt)
        if answers is None:
            enter("cancelled")
            return outcome

        enter("collected")
        outcome.conversation = await self.publish(form, interaction, answers)
        enter("dispatched")

        await run_blocking(self.cooldowns.trigger_cooldown, form_ref, interaction.user_id, cooldown)
        return outcome

    async def publish(self, form: Form, interaction: TriggerInteraction, answers: Sequence[str]) -> Any:
        """Acknowledge, create the private conversation and post the result.

        Returns:
            The platform's reference to the created conversation

        Raises:
            TransportError: if acknowledging or publishing fails
        """
        try:
            await interaction.acknowledge()
            conversation = await self.dispatcher.create_private_conversation(
                form.destination, interaction.display_name
            )
            await self.dispatcher.grant_access(conversation, interaction.user_id)
            await self.dispatcher.post(conversation, compose_result(form, interaction, answers))
        except TransportError:
            raise
        except Exception as e:
            logger.error(f"Failed to publish submission of form {form.id} by user {interaction.user_id}: {e}")
            raise TransportError(f"Failed to publish submission of form {form.id}: {e}") from e

        logger.info(f"Published submission of form {form.id} by user {interaction.user_id}")

        # The result is already posted at this point
        try:
            await interaction.update_acknowledgement(f"{self.dispatcher.mention(conversation)} has been created")
        except Exception as e:
            logger.warning(f"Failed to confirm submission of form {form.id} to user {interaction.user_id}: {e}")
        return conversation

    async def _can_dispatch(self, form: Form) -> bool:
        try:
            return await self.dispatcher.can_create_private_conversation(form.destination)
        except Exception as e:
            raise TransportError(f"Failed to check permissions in channel {form.destination}: {e}") from e
