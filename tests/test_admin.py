"""Tests for the admin operations behind the /forms commands."""

from datetime import timedelta
from pathlib import Path

import pytest

from formsbot.admin import Destination, FormAdmin, field_details, style_list
from formsbot.errors import (
    ConfigurationError,
    InvalidLengthBounds,
    NotFoundError,
    UserFriendlyError,
    ValueTooLong,
)
from formsbot.models import FormField, FormRef, Mention
from formsbot.state import SqliteStateStore


GUILD = 1000
WRITABLE = Destination(channel_id=999, mention="<#999>", can_create_private_threads=True)
READ_ONLY = Destination(channel_id=888, mention="<#888>", can_create_private_threads=False)


@pytest.fixture
def store(tmp_path: Path):
    store = SqliteStateStore(tmp_path / "forms.sqlite")
    yield store
    store.close()


@pytest.fixture
def admin(store):
    return FormAdmin(store)


@pytest.fixture
def form_ref(admin, store):
    admin.create_form(GUILD, "Applications", WRITABLE)
    [(form_id, _)] = store.get_form_ids(GUILD)
    return FormRef(GUILD, form_id)


def add_fields(admin, form_ref, count):
    for i in range(count):
        assert admin.add_field(form_ref, f"Field {i}", "short") == "Field was added"


def field_names(store, form_ref):
    return [f.name for f in store.get_form(form_ref).fields]


class TestFormCommands:

    def test_create_form(self, admin, store):
        message = admin.create_form(
            GUILD, "Reports", WRITABLE,
            description="Describe the issue",
            mention=Mention("role", 5),
            cooldown="1h 30min",
        )

        assert message == "Form was created"
        [(form_id, title)] = store.get_form_ids(GUILD)
        form = store.get_form(FormRef(GUILD, form_id))
        assert title == "Reports"
        assert form.destination == 999
        assert form.description == "Describe the issue"
        assert form.mention == Mention("role", 5)
        assert form.cooldown == timedelta(hours=1, minutes=30)

    def test_create_without_thread_permission(self, admin, store):
        with pytest.raises(ConfigurationError, match="permission to create private threads in <#888>"):
            admin.create_form(GUILD, "Reports", READ_ONLY)
        assert store.get_form_ids(GUILD) == []

    @pytest.mark.parametrize("cooldown", ["soon", "99999999999years"])
    def test_create_with_bad_cooldown_saves_nothing(self, admin, store, cooldown):
        with pytest.raises(UserFriendlyError):
            admin.create_form(GUILD, "Reports", WRITABLE, cooldown=cooldown)
        assert store.get_form_ids(GUILD) == []

    def test_delete(self, admin, form_ref):
        assert admin.delete_form(GUILD, form_ref.form_id) == "Form was deleted"
        assert admin.delete_form(GUILD, form_ref.form_id) == "Unknown form"

    def test_rename(self, admin, store, form_ref):
        assert admin.rename(form_ref, "Staff applications") == "Form was renamed"
        assert store.get_form(form_ref).title == "Staff applications"

    def test_rename_too_long(self, admin, store, form_ref):
        with pytest.raises(ValueTooLong):
            admin.rename(form_ref, "x" * 300)
        assert store.get_form(form_ref).title == "Applications"

    def test_unknown_form(self, admin):
        with pytest.raises(NotFoundError, match="Form could not be found"):
            admin.rename(FormRef(GUILD, "missing"), "Title")

    def test_description(self, admin, store, form_ref):
        assert admin.set_description(form_ref, "Hello") == "Form description was changed"
        assert store.get_form(form_ref).description == "Hello"
        admin.set_description(form_ref, None)
        assert store.get_form(form_ref).description is None

    def test_cooldown(self, admin, store, form_ref):
        assert admin.set_cooldown(form_ref, "2days") == "Form cooldown was changed"
        assert store.get_form(form_ref).cooldown == timedelta(days=2)
        admin.set_cooldown(form_ref, None)
        assert store.get_form(form_ref).cooldown is None

    def test_mention(self, admin, store, form_ref):
        assert admin.set_mention(form_ref, Mention("user", 3)) == "Mention of the form was changed"
        assert store.get_form(form_ref).mention == Mention("user", 3)

    def test_destination(self, admin, store, form_ref):
        other = Destination(channel_id=777, mention="<#777>", can_create_private_threads=True)
        assert admin.set_destination(form_ref, other) == "Form destination was updated"
        assert store.get_form(form_ref).destination == 777

        with pytest.raises(ConfigurationError):
            admin.set_destination(form_ref, READ_ONLY)
        assert store.get_form(form_ref).destination == 777

    def test_details(self, admin, form_ref):
        admin.set_cooldown(form_ref, "90s")
        admin.add_field(form_ref, "Name", "paragraph", placeholder="Your name", max_length=100)

        details = admin.form_details(form_ref)

        assert details.title == "Applications"
        assert details.summary == "- **Destination**: <#999>\n- **Cooldown**: 1m 30s"
        assert details.fields == [(
            "Name",
            "- **Style**: Paragraph\n- **Placeholder**: Your name\n- **Max length**: 100\n"
            "- **Required**: true\n- **In-line**: false",
        )]

    def test_form_choices(self, admin, form_ref):
        admin.create_form(GUILD, "Bug reports", WRITABLE)

        assert [title for _, title in admin.form_choices(GUILD)] == ["Applications", "Bug reports"]
        assert admin.form_choices(GUILD, "bug")[0][1] == "Bug reports"


class TestFieldCommands:

    def test_add_before(self, admin, store, form_ref):
        add_fields(admin, form_ref, 2)
        assert admin.add_field(form_ref, "First", "short", add_before=0) == "Field was added"
        assert field_names(store, form_ref) == ["First", "Field 0", "Field 1"]

    def test_add_before_invalid(self, admin, store, form_ref):
        add_fields(admin, form_ref, 2)
        assert admin.add_field(form_ref, "Late", "short", add_before=5) == "`add_before` is not valid"
        assert field_names(store, form_ref) == ["Field 0", "Field 1"]

    def test_add_too_many(self, admin, store, form_ref):
        add_fields(admin, form_ref, 5)
        message = admin.add_field(form_ref, "Sixth", "short")
        assert message == "The maximum amount of fields has been reached"
        assert len(field_names(store, form_ref)) == 5

    def test_add_defaults(self, admin, store, form_ref):
        admin.add_field(form_ref, "Name", "short")
        form_field = store.get_form(form_ref).fields[0]
        assert form_field.required is True
        assert form_field.inline is False

    def test_add_with_inverted_bounds(self, admin, store, form_ref):
        with pytest.raises(InvalidLengthBounds):
            admin.add_field(form_ref, "Name", "short", min_length=50, max_length=10)
        assert field_names(store, form_ref) == []

    def test_remove(self, admin, store, form_ref):
        add_fields(admin, form_ref, 2)
        assert admin.remove_field(form_ref, 0) == "Field was removed"
        assert admin.remove_field(form_ref, 5) == "Unknown field"
        assert field_names(store, form_ref) == ["Field 1"]

    def test_field_updates(self, admin, store, form_ref):
        add_fields(admin, form_ref, 1)

        assert admin.rename_field(form_ref, 0, "Full name") == "Field updated"
        admin.set_field_style(form_ref, 0, "paragraph")
        admin.set_field_placeholder(form_ref, 0, "Jane Doe")
        admin.set_field_validation(form_ref, 0, 2, 64, required=False)
        admin.set_field_inline(form_ref, 0, True)

        assert store.get_form(form_ref).fields[0] == FormField(
            name="Full name",
            style="paragraph",
            placeholder="Jane Doe",
            min_length=2,
            max_length=64,
            required=False,
            inline=True,
        )

    def test_validation_defaults_required(self, admin, store, form_ref):
        add_fields(admin, form_ref, 1)
        admin.set_field_validation(form_ref, 0, required=False)
        admin.set_field_validation(form_ref, 0, None, 10)
        assert store.get_form(form_ref).fields[0].required is True

    def test_update_unknown_field(self, admin, form_ref):
        with pytest.raises(NotFoundError, match="Field could not be found"):
            admin.rename_field(form_ref, 3, "Name")

    def test_move_uses_one_based_position(self, admin, store, form_ref):
        add_fields(admin, form_ref, 5)
        assert admin.move_field(form_ref, 4, 1) == "Field moved"
        assert field_names(store, form_ref) == ["Field 4", "Field 0", "Field 1", "Field 2", "Field 3"]

    def test_move_out_of_range(self, admin, store, form_ref):
        add_fields(admin, form_ref, 3)
        message = admin.move_field(form_ref, 0, 5)
        assert message == "The form has 3 fields thus position must be between 1 and 3"
        assert admin.move_field(form_ref, 7, 1) == "Unknown field"
        assert field_names(store, form_ref) == ["Field 0", "Field 1", "Field 2"]

    def test_field_choices(self, admin, form_ref):
        add_fields(admin, form_ref, 2)
        assert admin.field_choices(form_ref) == [(0, "Field 0"), (1, "Field 1")]
        assert admin.field_choices(FormRef(GUILD, "missing")) == []


class TestCooldownCommands:

    def test_clear(self, admin, store, form_ref):
        store.trigger_cooldown(form_ref, 42, timedelta(minutes=5))

        assert admin.clear_cooldown(form_ref, 42, "<@42>") == "Cooldown was cleared for <@42>"
        assert admin.clear_cooldown(form_ref, 42) == "<@42> was not on cooldown for this form"


def test_style_list_skips_missing_values():
    assert style_list([("A", "1"), ("B", None), ("C", "3")]) == "- **A**: 1\n- **C**: 3"


def test_field_details_short_style():
    assert field_details(FormField("Name", "short")).startswith("- **Style**: Short\n")
