"""Form aggregate: forms, their fields and the prompt built from them."""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Literal
from uuid import uuid4

from .errors import (
    IllegalAddBefore,
    InvalidLengthBounds,
    TooManyFields,
    ValueTooLong,
)


LABEL_MAX_LENGTH = 45
PLACEHOLDER_MAX_LENGTH = 100
FIELD_RESPONSE_MAX_LENGTH = 1024
TITLE_MAX_LENGTH = 256
DESCRIPTION_MAX_LENGTH = 4096
MAX_FIELDS = 5

# Discord closes an unanswered modal after this many seconds.
PROMPT_TIMEOUT = 600.0


FormId = str

FieldStyle = Literal["short", "paragraph"]
FIELD_STYLES: tuple[FieldStyle, ...] = ("short", "paragraph")

MentionKind = Literal["role", "user"]


def new_form_id() -> FormId:
    return str(uuid4())


@dataclass(frozen=True)
class FormRef:
    """A form addressed within the guild that owns it."""

    guild_id: int
    form_id: FormId


@dataclass(frozen=True)
class Mention:
    """A role or user announced in every published result."""

    kind: MentionKind
    id: int

    def __str__(self) -> str:
        if self.kind == "role":
            return f"<@&{self.id}>"
        return f"<@{self.id}>"

    def to_dict(self) -> dict:
        return {"kind": self.kind, "id": self.id}

    @classmethod
    def from_dict(cls, data: dict) -> "Mention":
        return cls(kind=data["kind"], id=int(data["id"]))


@dataclass
class FormField:
    """One line of a form: a label, an input style and response constraints."""

    name: str
    style: FieldStyle = "short"
    placeholder: str | None = None
    min_length: int | None = None
    max_length: int | None = None
    required: bool = True
    inline: bool = False

    def __post_init__(self) -> None:
        self._validate_name(self.name)
        self._validate_placeholder(self.placeholder)
        self._validate_bounds(self.min_length, self.max_length)
        if self.style not in FIELD_STYLES:
            raise ValueError(f"Unknown field style: {self.style}")

    def set_name(self, name: str) -> None:
        self._validate_name(name)
        self.name = name

    def set_placeholder(self, placeholder: str | None) -> None:
        self._validate_placeholder(placeholder)
        self.placeholder = placeholder

    def set_validation(
        self,
        min_length: int | None,
        max_length: int | None,
        required: bool = True,
    ) -> None:
        """Replace the response length bounds and the required flag together."""
        self._validate_bounds(min_length, max_length)
        self.min_length = min_length
        self.max_length = max_length
        self.required = required

    @staticmethod
    def _validate_name(name: str) -> None:
        if len(name) > LABEL_MAX_LENGTH:
            raise ValueTooLong("field name", LABEL_MAX_LENGTH)

    @staticmethod
    def _validate_placeholder(placeholder: str | None) -> None:
        if placeholder is not None and len(placeholder) > PLACEHOLDER_MAX_LENGTH:
            raise ValueTooLong("placeholder", PLACEHOLDER_MAX_LENGTH)

    @staticmethod
    def _validate_bounds(min_length: int | None, max_length: int | None) -> None:
        for bound in (min_length, max_length):
            if bound is None:
                continue
            if bound > FIELD_RESPONSE_MAX_LENGTH:
                raise ValueTooLong("response length", FIELD_RESPONSE_MAX_LENGTH)
            if bound < 0:
                raise InvalidLengthBounds("Response lengths cannot be negative")
        if max_length is not None and max_length < 1:
            raise InvalidLengthBounds("The maximum length must be at least 1")
        if min_length is not None and max_length is not None and min_length > max_length:
            raise InvalidLengthBounds("The minimum length cannot be larger than the maximum length")

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "style": self.style,
            "placeholder": self.placeholder,
            "min_length": self.min_length,
            "max_length": self.max_length,
            "required": self.required,
            "inline": self.inline,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FormField":
        return cls(
            name=data["name"],
            style=data.get("style", "short"),
            placeholder=data.get("placeholder"),
            min_length=data.get("min_length"),
            max_length=data.get("max_length"),
            required=data.get("required", True),
            inline=data.get("inline", False),
        )


@dataclass(frozen=True)
class PromptLine:
    """A single input of a prompt, mirroring one form field."""

    custom_id: str
    label: str
    style: FieldStyle
    placeholder: str | None
    min_length: int | None
    max_length: int
    required: bool


@dataclass(frozen=True)
class PromptSpec:
    """Platform-neutral description of the modal shown to a submitter."""

    title: str
    lines: tuple[PromptLine, ...]
    timeout: float = PROMPT_TIMEOUT


@dataclass
class Form:
    """An admin-defined, ordered set of fields plus where results go.

    Instances are plain values: mutate them through the methods below, then
    hand the whole aggregate back to the store.
    """

    title: str
    destination: int
    id: FormId = field(default_factory=new_form_id)
    description: str | None = None
    fields: list[FormField] = field(default_factory=list)
    mention: Mention | None = None
    cooldown: timedelta | None = None

    def __post_init__(self) -> None:
        self._validate_title(self.title)
        self._validate_description(self.description)
        if len(self.fields) > MAX_FIELDS:
            raise TooManyFields()
        self.cooldown = self._normalize_cooldown(self.cooldown)

    @classmethod
    def create(cls, title: str, destination: int) -> "Form":
        """Create a new, fieldless form with a fresh id."""
        return cls(title=title, destination=destination)

    def set_title(self, title: str) -> None:
        self._validate_title(title)
        self.title = title

    def set_description(self, description: str | None) -> None:
        self._validate_description(description)
        self.description = description

    def set_cooldown(self, cooldown: timedelta | None) -> None:
        self.cooldown = self._normalize_cooldown(cooldown)

    def get_field(self, index: int) -> FormField | None:
        if 0 <= index < len(self.fields):
            return self.fields[index]
        return None

    def add_field(self, form_field: FormField, insert_before: int | None = None) -> None:
        """Insert a field before ``insert_before``, or append it.

        Raises:
            TooManyFields: if the form already has MAX_FIELDS fields
            IllegalAddBefore: if ``insert_before`` is past the end
        """
        if len(self.fields) >= MAX_FIELDS:
            raise TooManyFields()

        if insert_before is None:
            self.fields.append(form_field)
            return

        if insert_before < 0 or insert_before > len(self.fields):
            raise IllegalAddBefore()
        self.fields.insert(insert_before, form_field)

    def remove_field(self, index: int) -> bool:
        if 0 <= index < len(self.fields):
            del self.fields[index]
            return True
        return False

    def move_field(self, index: int, destination: int) -> bool:
        """Move a field so it ends up at ``destination``.

        The destination is an index into the sequence after the field has
        been taken out, so moving 0 to 4 in five fields rotates left.

        Returns:
            False if ``index`` does not name a field

        Raises:
            IllegalAddBefore: if ``destination`` is not a valid position
        """
        if not 0 <= index < len(self.fields):
            return False

        if destination < 0 or destination >= len(self.fields):
            raise IllegalAddBefore()

        moved = self.fields.pop(index)
        self.fields.insert(destination, moved)
        return True

    def build_prompt(self) -> PromptSpec | None:
        """Describe the modal for this form, or None if it has no fields."""
        if not self.fields:
            return None

        lines = tuple(
            PromptLine(
                custom_id=str(i),
                label=f.name,
                style=f.style,
                placeholder=f.placeholder,
                min_length=f.min_length,
                max_length=f.max_length if f.max_length is not None else FIELD_RESPONSE_MAX_LENGTH,
                required=f.required,
            )
            for i, f in enumerate(self.fields)
        )
        return PromptSpec(title=self.title, lines=lines)

    @staticmethod
    def _validate_title(title: str) -> None:
        if len(title) > TITLE_MAX_LENGTH:
            raise ValueTooLong("title", TITLE_MAX_LENGTH)

    @staticmethod
    def _validate_description(description: str | None) -> None:
        if description is not None and len(description) > DESCRIPTION_MAX_LENGTH:
            raise ValueTooLong("description", DESCRIPTION_MAX_LENGTH)

    @staticmethod
    def _normalize_cooldown(cooldown: timedelta | None) -> timedelta | None:
        if cooldown is None:
            return None
        seconds = int(cooldown.total_seconds())
        if seconds <= 0:
            return None
        return timedelta(seconds=seconds)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "fields": [f.to_dict() for f in self.fields],
            "destination": self.destination,
            "mention": self.mention.to_dict() if self.mention else None,
            "cooldown": int(self.cooldown.total_seconds()) if self.cooldown else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Form":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            title=data["title"],
            description=data.get("description"),
            fields=[FormField.from_dict(f) for f in data.get("fields", [])],
            destination=int(data["destination"]),
            mention=Mention.from_dict(data["mention"]) if data.get("mention") else None,
            cooldown=timedelta(seconds=data["cooldown"]) if data.get("cooldown") else None,
        )
