"""Admin operations behind the ``/forms`` command tree.

Each method loads a form, applies one aggregate or tracker operation and
saves the whole form back, returning the message shown to the moderator.
Structural errors are turned into short messages here; validation and
not-found errors are raised as FormsError subclasses and shown verbatim by
the command layer.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable

from .durations import format_duration, parse_duration
from .errors import ConfigurationError, IllegalAddBefore, NotFoundError, TooManyFields
from .models import FieldStyle, Form, FormField, FormId, FormRef, Mention
from .state import StateStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Destination:
    """A channel chosen as a form destination, as resolved by the platform."""

    channel_id: int
    mention: str
    can_create_private_threads: bool


@dataclass
class FormDetails:
    """Everything ``/forms details`` shows about a form."""

    title: str
    summary: str
    fields: list[tuple[str, str]]


def style_list(elements: list[tuple[str, str | None]]) -> str:
    """Render ``- **Name**: value`` lines, skipping missing values."""
    return "\n".join(
        f"- **{name}**: {value}" for name, value in elements if value is not None
    )


def field_details(form_field: FormField) -> str:
    return style_list([
        ("Style", "Paragraph" if form_field.style == "paragraph" else "Short"),
        ("Placeholder", form_field.placeholder),
        ("Minimum length", str(form_field.min_length) if form_field.min_length is not None else None),
        ("Max length", str(form_field.max_length) if form_field.max_length is not None else None),
        ("Required", str(form_field.required).lower()),
        ("In-line", str(form_field.inline).lower()),
    ])


class FormAdmin:
    """Moderator-facing operations on forms, fields and cooldowns."""

    def __init__(self, store: StateStore):
        self.store = store

    def get_form(self, form_ref: FormRef) -> Form:
        form = self.store.get_form(form_ref)
        if form is None:
            raise NotFoundError("Form could not be found")
        return form

    def _parse_cooldown(self, cooldown: str | None) -> timedelta | None:
        return parse_duration(cooldown) if cooldown is not None else None

    @staticmethod
    def validate_destination(destination: Destination) -> None:
        if not destination.can_create_private_threads:
            raise ConfigurationError(
                f"I do not have permission to create private threads in {destination.mention}"
            )

    # --- Forms ---

    def create_form(
        self,
        guild_id: int,
        title: str,
        destination: Destination,
        description: str | None = None,
        mention: Mention | None = None,
        cooldown: str | None = None,
    ) -> str:
        self.validate_destination(destination)

        form = Form.create(title, destination.channel_id)
        form.mention = mention
        form.set_description(description)
        form.set_cooldown(self._parse_cooldown(cooldown))

        self.store.save_form(guild_id, form)
        logger.info(f"Created form {form.id} in guild {guild_id}")
        return "Form was created"

    def delete_form(self, guild_id: int, form_id: FormId) -> str:
        if self.store.delete_form(guild_id, form_id):
            logger.info(f"Deleted form {form_id} in guild {guild_id}")
            return "Form was deleted"
        return "Unknown form"

    def _update_form(self, form_ref: FormRef, updater: Callable[[Form], None], message: str) -> str:
        form = self.get_form(form_ref)
        updater(form)
        self.store.save_form(form_ref.guild_id, form)
        return message

    def rename(self, form_ref: FormRef, title: str) -> str:
        return self._update_form(form_ref, lambda f: f.set_title(title), "Form was renamed")

    def set_description(self, form_ref: FormRef, description: str | None) -> str:
        return self._update_form(
            form_ref, lambda f: f.set_description(description), "Form description was changed"
        )

    def set_cooldown(self, form_ref: FormRef, cooldown: str | None) -> str:
        duration = self._parse_cooldown(cooldown)
        return self._update_form(
            form_ref, lambda f: f.set_cooldown(duration), "Form cooldown was changed"
        )

    def set_mention(self, form_ref: FormRef, mention: Mention | None) -> str:
        def update(form: Form) -> None:
            form.mention = mention

        return self._update_form(form_ref, update, "Mention of the form was changed")

    def set_destination(self, form_ref: FormRef, destination: Destination) -> str:
        form = self.get_form(form_ref)
        self.validate_destination(destination)
        form.destination = destination.channel_id
        self.store.save_form(form_ref.guild_id, form)
        return "Form destination was updated"

    def form_details(self, form_ref: FormRef, destination_mention: str | None = None) -> FormDetails:
        form = self.get_form(form_ref)
        return FormDetails(
            title=form.title,
            summary=style_list([
                ("Destination", destination_mention or f"<#{form.destination}>"),
                ("Description", form.description),
                ("Mentions", str(form.mention) if form.mention else None),
                ("Cooldown", format_duration(form.cooldown) if form.cooldown else None),
            ]),
            fields=[(f.name, field_details(f)) for f in form.fields],
        )

    def form_choices(self, guild_id: int, partial: str = "") -> list[tuple[FormId, str]]:
        """Forms of a guild whose title contains ``partial``, for autocomplete."""
        partial = partial.lower()
        return [
            (form_id, title)
            for form_id, title in self.store.get_form_ids(guild_id)
            if partial in title.lower()
        ]

    def field_choices(self, form_ref: FormRef) -> list[tuple[int, str]]:
        fields = self.store.get_fields(form_ref)
        if not fields:
            return []
        return [(i, f.name) for i, f in enumerate(fields)]

    # --- Fields ---

    def add_field(
        self,
        form_ref: FormRef,
        name: str,
        style: FieldStyle,
        placeholder: str | None = None,
        min_length: int | None = None,
        max_length: int | None = None,
        required: bool | None = None,
        add_before: int | None = None,
        inline: bool | None = None,
    ) -> str:
        form = self.get_form(form_ref)
        form_field = FormField(
            name=name,
            style=style,
            placeholder=placeholder,
            min_length=min_length,
            max_length=max_length,
            required=True if required is None else required,
            inline=False if inline is None else inline,
        )

        try:
            form.add_field(form_field, add_before)
        except IllegalAddBefore:
            return "`add_before` is not valid"
        except TooManyFields:
            return "The maximum amount of fields has been reached"

        self.store.save_form(form_ref.guild_id, form)
        return "Field was added"

    def remove_field(self, form_ref: FormRef, index: int) -> str:
        form = self.get_form(form_ref)
        if not form.remove_field(index):
            return "Unknown field"
        self.store.save_form(form_ref.guild_id, form)
        return "Field was removed"

    def _update_field(self, form_ref: FormRef, index: int, updater: Callable[[FormField], None]) -> str:
        form = self.get_form(form_ref)
        form_field = form.get_field(index)
        if form_field is None:
            raise NotFoundError("Field could not be found")
        updater(form_field)
        self.store.save_form(form_ref.guild_id, form)
        return "Field updated"

    def rename_field(self, form_ref: FormRef, index: int, name: str) -> str:
        return self._update_field(form_ref, index, lambda f: f.set_name(name))

    def set_field_style(self, form_ref: FormRef, index: int, style: FieldStyle) -> str:
        def update(form_field: FormField) -> None:
            form_field.style = style

        return self._update_field(form_ref, index, update)

    def set_field_placeholder(self, form_ref: FormRef, index: int, placeholder: str | None) -> str:
        return self._update_field(form_ref, index, lambda f: f.set_placeholder(placeholder))

    def set_field_validation(
        self,
        form_ref: FormRef,
        index: int,
        min_length: int | None = None,
        max_length: int | None = None,
        required: bool | None = None,
    ) -> str:
        return self._update_field(
            form_ref,
            index,
            lambda f: f.set_validation(min_length, max_length, True if required is None else required),
        )

    def set_field_inline(self, form_ref: FormRef, index: int, inline: bool) -> str:
        def update(form_field: FormField) -> None:
            form_field.inline = inline

        return self._update_field(form_ref, index, update)

    def move_field(self, form_ref: FormRef, index: int, position: int) -> str:
        """Move a field to a 1-based ``position``."""
        form = self.get_form(form_ref)
        try:
            moved = form.move_field(index, position - 1)
        except IllegalAddBefore:
            count = len(form.fields)
            return f"The form has {count} fields thus position must be between 1 and {count}"

        if not moved:
            return "Unknown field"
        self.store.save_form(form_ref.guild_id, form)
        return "Field moved"

    # --- Cooldowns ---

    def clear_cooldown(self, form_ref: FormRef, user_id: int, user_mention: str | None = None) -> str:
        who = user_mention or f"<@{user_id}>"
        if self.store.clear_cooldown(form_ref, user_id):
            return f"Cooldown was cleared for {who}"
        return f"{who} was not on cooldown for this form"
