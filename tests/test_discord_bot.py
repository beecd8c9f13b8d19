"""Tests for the Discord adapter - with mocked discord objects."""

import logging
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from formsbot.discord_bot import (
    CUSTOM_ID_PREFIX,
    GENERIC_FAILURE,
    PRIVATE_THREAD_ARCHIVE_MINUTES,
    DiscordDispatcher,
    DiscordTriggerInteraction,
    FormModal,
    FormsCog,
    build_embed,
    parse_custom_id,
    parse_emoji,
    to_mention,
)
from formsbot.errors import NotFoundError, TransportError
from formsbot.models import Form, FormField, FormRef, Mention
from formsbot.pipeline import ComposedResult, ResultField


FORM_ID = "5f0c6c8e-2f7a-4a53-9d6c-7b8a1f8c9e10"


class TestCustomId:

    def test_parses_form_button(self):
        assert parse_custom_id(f"{CUSTOM_ID_PREFIX}{FORM_ID}") == FORM_ID

    @pytest.mark.parametrize(
        "custom_id",
        [None, "", FORM_ID, "other:" + FORM_ID, CUSTOM_ID_PREFIX + "not-a-uuid"],
    )
    def test_ignores_other_components(self, custom_id):
        assert parse_custom_id(custom_id) is None


class TestToMention:

    def test_role(self):
        role = MagicMock(spec=discord.Role)
        role.id = 7
        assert to_mention(role) == Mention("role", 7)

    def test_user(self):
        assert to_mention(discord.Object(id=9)) == Mention("user", 9)

    def test_none(self):
        assert to_mention(None) is None


def test_build_embed():
    result = ComposedResult(
        title="Applications",
        author_name="Ferris",
        author_icon_url="https://cdn.example/avatar.png",
        content="<@&1>",
        fields=(ResultField("Name", "Ferris"), ResultField("Notes", "", inline=True)),
    )

    embed = build_embed(result)

    assert embed.title == "Applications"
    assert embed.author.name == "Ferris"
    assert [(f.name, f.value, f.inline) for f in embed.fields] == [
        ("Name", "Ferris", False),
        ("Notes", "-", True),
    ]


@pytest.mark.asyncio
async def test_form_modal_mirrors_prompt():
    form = Form.create("A very long title that does not fit in a Discord modal", 1)
    form.add_field(FormField("Name", "short", placeholder="Your name", max_length=50))
    form.add_field(FormField("Bio", "paragraph", required=False))

    modal = FormModal(form.build_prompt())

    assert len(modal.title) <= 45
    assert [child.custom_id for child in modal.children] == ["0", "1"]
    assert modal.children[0].style == discord.InputTextStyle.short
    assert modal.children[1].style == discord.InputTextStyle.long
    assert modal.answers is None


def make_interaction(done: bool = False):
    interaction = MagicMock()
    interaction.user.id = 55
    interaction.user.display_name = "Ferris"
    interaction.user.display_avatar.url = "https://cdn.example/avatar.png"
    interaction.response.is_done.return_value = done
    interaction.response.send_message = AsyncMock()
    interaction.response.defer = AsyncMock()
    interaction.followup.send = AsyncMock()
    interaction.edit_original_response = AsyncMock()
    return interaction


class TestTriggerInteraction:

    def test_exposes_submitter(self):
        trigger = DiscordTriggerInteraction(make_interaction())
        assert (trigger.user_id, trigger.display_name) == (55, "Ferris")
        assert trigger.avatar_url == "https://cdn.example/avatar.png"

    @pytest.mark.asyncio
    async def test_reply_before_response(self):
        interaction = make_interaction()
        await DiscordTriggerInteraction(interaction).reply("hello")
        interaction.response.send_message.assert_awaited_once_with("hello", ephemeral=True)

    @pytest.mark.asyncio
    async def test_reply_after_response(self):
        interaction = make_interaction(done=True)
        await DiscordTriggerInteraction(interaction).reply("hello")
        interaction.followup.send.assert_awaited_once_with("hello", ephemeral=True)

    @pytest.mark.asyncio
    async def test_acknowledge_then_update(self):
        interaction = make_interaction()
        trigger = DiscordTriggerInteraction(interaction)

        await trigger.acknowledge()
        await trigger.update_acknowledgement("done")

        interaction.response.defer.assert_awaited_once_with(ephemeral=True)
        interaction.edit_original_response.assert_awaited_once_with(content="done")


class TestDispatcher:

    def make_channel(self, can_create: bool = True):
        channel = MagicMock(spec=discord.TextChannel)
        channel.guild = MagicMock()
        channel.permissions_for.return_value.create_private_threads = can_create
        channel.create_thread = AsyncMock(return_value="thread")
        return channel

    def make_bot(self, channel):
        bot = MagicMock()
        bot.get_channel.return_value = channel
        bot.fetch_channel = AsyncMock(return_value=channel)
        return bot

    @pytest.mark.asyncio
    async def test_permission_check(self):
        dispatcher = DiscordDispatcher(self.make_bot(self.make_channel(can_create=False)))
        assert await dispatcher.can_create_private_conversation(1) is False

        dispatcher = DiscordDispatcher(self.make_bot(self.make_channel()))
        assert await dispatcher.can_create_private_conversation(1) is True

    @pytest.mark.asyncio
    async def test_unknown_channel(self):
        bot = MagicMock()
        bot.get_channel.return_value = None
        bot.fetch_channel = AsyncMock(side_effect=discord.NotFound(MagicMock(status=404), "Unknown Channel"))

        assert await DiscordDispatcher(bot).can_create_private_conversation(1) is False

    @pytest.mark.asyncio
    async def test_creates_private_thread(self):
        channel = self.make_channel()
        dispatcher = DiscordDispatcher(self.make_bot(channel))

        thread = await dispatcher.create_private_conversation(1, "Ferris")

        assert thread == "thread"
        channel.create_thread.assert_awaited_once_with(
            name="Ferris",
            type=discord.ChannelType.private_thread,
            auto_archive_duration=PRIVATE_THREAD_ARCHIVE_MINUTES,
            invitable=False,
        )

    @pytest.mark.asyncio
    async def test_post_and_grant_access(self):
        dispatcher = DiscordDispatcher(MagicMock())
        thread = MagicMock()
        thread.send = AsyncMock()
        thread.add_user = AsyncMock()

        await dispatcher.grant_access(thread, 55)
        await dispatcher.post(thread, ComposedResult(title="T", author_name="A", content="hi"))

        assert thread.add_user.await_args.args[0].id == 55
        assert thread.send.await_args.kwargs["content"] == "hi"
        assert isinstance(thread.send.await_args.kwargs["embed"], discord.Embed)


class TestParseEmoji:

    def test_unicode(self):
        assert parse_emoji("📝").name == "📝"

    def test_custom(self):
        emoji = parse_emoji("<:form:123456789012345678>")
        assert (emoji.name, emoji.id) == ("form", 123456789012345678)

    @pytest.mark.parametrize("text", ["", "  ", "<:broken>", "<:form:abc>", "<form:1>"])
    def test_rejects(self, text):
        assert parse_emoji(text) is None


def make_ctx():
    ctx = MagicMock()
    ctx.guild_id = 1000
    ctx.defer = AsyncMock()
    ctx.respond = AsyncMock()
    ctx.channel.send = AsyncMock()
    return ctx


class TestButtonCommand:

    @pytest.mark.asyncio
    async def test_malformed_emoji(self):
        ctx = make_ctx()

        await FormsCog.button.callback(MagicMock(), ctx, FORM_ID, "Apply", "Green", None, "<:broken>")

        ctx.respond.assert_awaited_once_with("Failed to parse the provided emoji", ephemeral=True)
        ctx.channel.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_send_failure_is_not_blamed_on_emoji(self):
        ctx = make_ctx()
        ctx.channel.send.side_effect = discord.Forbidden(MagicMock(status=403), "Missing Permissions")

        with pytest.raises(discord.Forbidden):
            await FormsCog.button.callback(MagicMock(), ctx, FORM_ID, "Apply", "Green", None, "📝")

        ctx.respond.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_creates_button(self):
        ctx = make_ctx()

        await FormsCog.button.callback(MagicMock(), ctx, FORM_ID, "Apply", "Green", "Hello", None)

        view = ctx.channel.send.await_args.kwargs["view"]
        assert view.children[0].custom_id == f"{CUSTOM_ID_PREFIX}{FORM_ID}"
        assert ctx.channel.send.await_args.kwargs["content"] == "Hello"
        ctx.respond.assert_awaited_once_with("Button created", ephemeral=True)


class TestErrorHandling:

    def component_interaction(self, custom_id: str):
        interaction = make_interaction()
        interaction.type = discord.InteractionType.component
        interaction.data = {"custom_id": custom_id}
        interaction.guild_id = 1000
        return interaction

    @pytest.mark.asyncio
    async def test_button_starts_pipeline(self):
        cog = MagicMock()
        cog.pipeline.handle_trigger = AsyncMock()
        interaction = self.component_interaction(f"{CUSTOM_ID_PREFIX}{FORM_ID}")

        await FormsCog.on_interaction(cog, interaction)

        form_ref, trigger = cog.pipeline.handle_trigger.await_args.args
        assert form_ref == FormRef(1000, FORM_ID)
        assert trigger.user_id == 55

    @pytest.mark.asyncio
    async def test_other_components_are_ignored(self):
        cog = MagicMock()
        cog.pipeline.handle_trigger = AsyncMock()

        await FormsCog.on_interaction(cog, self.component_interaction("some_other_button"))

        cog.pipeline.handle_trigger.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transport_error_gets_generic_reply(self, caplog):
        cog = MagicMock()
        cog.pipeline.handle_trigger = AsyncMock(side_effect=TransportError("redis at 10.0.0.5 refused"))
        interaction = self.component_interaction(f"{CUSTOM_ID_PREFIX}{FORM_ID}")

        with caplog.at_level(logging.ERROR, logger="formsbot.discord_bot"):
            await FormsCog.on_interaction(cog, interaction)

        interaction.response.send_message.assert_awaited_once_with(GENERIC_FAILURE, ephemeral=True)
        assert "10.0.0.5" not in str(interaction.response.send_message.await_args)
        assert any(record.exc_info for record in caplog.records)

    @pytest.mark.asyncio
    async def test_forms_error_shown_verbatim(self):
        ctx = make_ctx()
        error = discord.ApplicationCommandInvokeError(NotFoundError("Form could not be found"))

        await FormsCog.cog_command_error(MagicMock(), ctx, error)

        ctx.respond.assert_awaited_once_with("Form could not be found", ephemeral=True)

    @pytest.mark.asyncio
    async def test_other_command_errors_get_generic_reply(self, caplog):
        ctx = make_ctx()
        error = discord.ApplicationCommandInvokeError(TransportError("database is locked"))

        with caplog.at_level(logging.ERROR, logger="formsbot.discord_bot"):
            await FormsCog.cog_command_error(MagicMock(), ctx, error)

        ctx.respond.assert_awaited_once_with(GENERIC_FAILURE, ephemeral=True)
        assert any(record.exc_info for record in caplog.records)
