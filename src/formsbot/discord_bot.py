"""Discord adapter: the ``/forms`` command tree, the button trigger, and the
Discord implementations of the pipeline's dispatcher and interaction.
"""

import logging
import re
from uuid import UUID

import discord
from discord.ext import commands

from .admin import Destination, FormAdmin
from .config import BotConfig
from .errors import ConfigurationError, FormsError
from .models import FIELD_RESPONSE_MAX_LENGTH, MAX_FIELDS, FormRef, Mention, PromptSpec
from .pipeline import ComposedResult, SubmissionPipeline
from .state import StateStore, run_blocking

logger = logging.getLogger(__name__)


CUSTOM_ID_PREFIX = "show_form:"

CUSTOM_EMOJI = re.compile(r"<a?:\w+:\d+>")

GENERIC_FAILURE = "Something went wrong while handling this. Please try again later."

# Discord caps modal titles well below the form title limit
MODAL_TITLE_MAX_LENGTH = 45

PRIVATE_THREAD_ARCHIVE_MINUTES = 10080

INPUT_STYLES = {
    "short": discord.InputTextStyle.short,
    "paragraph": discord.InputTextStyle.long,
}

BUTTON_COLORS = {
    "Blurple": discord.ButtonStyle.primary,
    "Grey": discord.ButtonStyle.secondary,
    "Green": discord.ButtonStyle.success,
    "Red": discord.ButtonStyle.danger,
}

FIELD_STYLE_CHOICES = [
    discord.OptionChoice("Short (single-line)", "short"),
    discord.OptionChoice("Paragraph (multi-line)", "paragraph"),
]


def parse_custom_id(custom_id: str | None) -> str | None:
    """Extract the form id from a form button's custom id."""
    if not custom_id or not custom_id.startswith(CUSTOM_ID_PREFIX):
        return None
    form_id = custom_id[len(CUSTOM_ID_PREFIX):]
    try:
        UUID(form_id)
    except ValueError:
        return None
    return form_id


def parse_emoji(text: str) -> discord.PartialEmoji | None:
    """Parse a unicode emoji or a custom one written as ``<:name:id>``.

    Returns None for empty text or a malformed custom emoji.
    """
    text = text.strip()
    if not text:
        return None
    if not text.startswith("<"):
        return discord.PartialEmoji(name=text)
    if CUSTOM_EMOJI.fullmatch(text) is None:
        return None
    return discord.PartialEmoji.from_str(text)


def to_mention(mentionable: discord.abc.Snowflake | None) -> Mention | None:
    if mentionable is None:
        return None
    if isinstance(mentionable, discord.Role):
        return Mention(kind="role", id=mentionable.id)
    return Mention(kind="user", id=mentionable.id)


def build_embed(result: ComposedResult) -> discord.Embed:
    embed = discord.Embed(title=result.title, timestamp=discord.utils.utcnow())
    embed.set_author(name=result.author_name, icon_url=result.author_icon_url)
    for result_field in result.fields:
        # Optional fields left empty still need a visible value
        embed.add_field(name=result_field.label, value=result_field.value or "-", inline=result_field.inline)
    return embed


class FormModal(discord.ui.Modal):
    """A modal built from a PromptSpec that records the submitted answers."""

    def __init__(self, spec: PromptSpec):
        super().__init__(title=spec.title[:MODAL_TITLE_MAX_LENGTH], timeout=spec.timeout)
        for line in spec.lines:
            self.add_item(discord.ui.InputText(
                label=line.label,
                style=INPUT_STYLES[line.style],
                custom_id=line.custom_id,
                placeholder=line.placeholder,
                min_length=line.min_length,
                max_length=line.max_length,
                required=line.required,
            ))
        self.answers: list[str] | None = None
        self.submit_interaction: discord.Interaction | None = None

    async def callback(self, interaction: discord.Interaction) -> None:
        self.answers = [child.value or "" for child in self.children]
        self.submit_interaction = interaction
        self.stop()


class DiscordTriggerInteraction:
    """Pipeline-facing wrapper around the interaction that started a trigger."""

    def __init__(self, interaction: discord.Interaction):
        self.interaction = interaction
        self.user_id = interaction.user.id
        self.display_name = interaction.user.display_name
        self.avatar_url = interaction.user.display_avatar.url
        self._modal_interaction: discord.Interaction | None = None
        self._acknowledged = False

    async def reply(self, text: str) -> None:
        if self._modal_interaction is not None and self._acknowledged:
            await self._modal_interaction.edit_original_response(content=text)
            return

        target = self._modal_interaction or self.interaction
        if target.response.is_done():
            await target.followup.send(text, ephemeral=True)
        else:
            await target.response.send_message(text, ephemeral=True)

    async def prompt(self, spec: PromptSpec) -> list[str] | None:
        modal = FormModal(spec)
        await self.interaction.response.send_modal(modal)
        await modal.wait()

        if modal.answers is None or modal.submit_interaction is None:
            return None
        self._modal_interaction = modal.submit_interaction
        return modal.answers

    async def acknowledge(self) -> None:
        target = self._modal_interaction or self.interaction
        await target.response.defer(ephemeral=True)
        self._acknowledged = True

    async def update_acknowledgement(self, text: str) -> None:
        target = self._modal_interaction or self.interaction
        await target.edit_original_response(content=text)


class DiscordDispatcher:
    """Publishes results into private threads under the destination channel."""

    def __init__(self, bot: discord.Bot):
        self.bot = bot

    async def _get_channel(self, channel_id: int) -> discord.abc.GuildChannel | None:
        channel = self.bot.get_channel(channel_id)
        if channel is not None:
            return channel
        try:
            return await self.bot.fetch_channel(channel_id)
        except (discord.NotFound, discord.Forbidden):
            return None

    async def can_create_private_conversation(self, destination: int) -> bool:
        channel = await self._get_channel(destination)
        if not isinstance(channel, discord.TextChannel):
            return False
        return channel.permissions_for(channel.guild.me).create_private_threads

    async def create_private_conversation(self, destination: int, title: str) -> discord.Thread:
        channel = await self._get_channel(destination)
        if not isinstance(channel, discord.TextChannel):
            raise discord.ClientException(f"Channel {destination} is not a text channel")
        return await channel.create_thread(
            name=title,
            type=discord.ChannelType.private_thread,
            auto_archive_duration=PRIVATE_THREAD_ARCHIVE_MINUTES,
            invitable=False,
        )

    async def grant_access(self, conversation: discord.Thread, user_id: int) -> None:
        await conversation.add_user(discord.Object(id=user_id))

    async def post(self, conversation: discord.Thread, message: ComposedResult) -> None:
        await conversation.send(content=message.content, embed=build_embed(message))

    def mention(self, conversation: discord.Thread) -> str:
        return conversation.mention


async def autocomplete_form(ctx: discord.AutocompleteContext) -> list[discord.OptionChoice]:
    try:
        choices = await run_blocking(ctx.cog.admin.form_choices, ctx.interaction.guild_id, ctx.value or "")
    except Exception as e:
        logger.error(f"An error occurred fetching auto-complete values for forms: {e}")
        return []
    return [discord.OptionChoice(name=title[:100], value=form_id) for form_id, title in choices[:25]]


async def autocomplete_field(ctx: discord.AutocompleteContext) -> list[discord.OptionChoice]:
    form_id = ctx.options.get("form")
    if not form_id:
        return []
    try:
        choices = await run_blocking(ctx.cog.admin.field_choices, FormRef(ctx.interaction.guild_id, form_id))
    except Exception as e:
        logger.error(f"An error occurred fetching auto-complete values for fields: {e}")
        return []
    return [discord.OptionChoice(name=name, value=index) for index, name in choices]


def form_option(description: str = "The form to consider"):
    return discord.Option(str, description, name="form", autocomplete=autocomplete_form)


def field_option(description: str = "The field to update"):
    return discord.Option(int, description, name="field", autocomplete=autocomplete_field)


class FormsCog(commands.Cog):
    """Form management commands and the button trigger."""

    forms = discord.SlashCommandGroup(
        "forms",
        "Manage forms in the server",
        guild_only=True,
        default_member_permissions=discord.Permissions(manage_channels=True),
    )
    fields = forms.create_subgroup("fields", "Manages the fields of forms")
    cooldowns = forms.create_subgroup("cooldowns", "Manage cooldowns")

    def __init__(self, bot: discord.Bot, store: StateStore):
        self.bot = bot
        self.admin = FormAdmin(store)
        self.pipeline = SubmissionPipeline(store, store, DiscordDispatcher(bot))

    @staticmethod
    def _destination(channel: discord.TextChannel) -> Destination:
        return Destination(
            channel_id=channel.id,
            mention=channel.mention,
            can_create_private_threads=channel.permissions_for(channel.guild.me).create_private_threads,
        )

    async def cog_command_error(self, ctx: discord.ApplicationContext, error: Exception) -> None:
        original = getattr(error, "original", error)
        if isinstance(original, FormsError):
            await ctx.respond(str(original), ephemeral=True)
            return

        logger.error(f"Error occurred handling command {ctx.command}", exc_info=original)
        try:
            await ctx.respond(GENERIC_FAILURE, ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Error while reporting a failed command: {e}")

    # --- Trigger ---

    @commands.Cog.listener()
    async def on_interaction(self, interaction: discord.Interaction) -> None:
        if interaction.type != discord.InteractionType.component:
            return
        form_id = parse_custom_id((interaction.data or {}).get("custom_id"))
        if form_id is None or interaction.guild_id is None:
            return

        trigger = DiscordTriggerInteraction(interaction)
        try:
            await self.pipeline.handle_trigger(FormRef(interaction.guild_id, form_id), trigger)
        except Exception:
            logger.exception(f"Error occurred handling submission of form {form_id}")
            try:
                await trigger.reply(GENERIC_FAILURE)
            except discord.HTTPException as e:
                logger.error(f"Error while reporting a failed submission: {e}")

    # --- Forms ---

    @forms.command(name="create", description="Creates a new form")
    async def create_form(
        self,
        ctx: discord.ApplicationContext,
        title: discord.Option(str, "The title of the form", max_length=MODAL_TITLE_MAX_LENGTH),
        destination: discord.Option(discord.TextChannel, "The channel to create the thread under"),
        description: discord.Option(
            str, "The text shown in top of responses after the form is submitted",
            max_length=4096, required=False, default=None,
        ),
        mention: discord.Option(
            discord.SlashCommandOptionType.mentionable, "Role/user to be mentioned on submission",
            required=False, default=None,
        ),
        cooldown: discord.Option(
            str, "How long users must wait between submitting (e.g. `15days 2min 2s`)",
            required=False, default=None,
        ),
    ):
        await ctx.defer(ephemeral=True)
        message = await run_blocking(
            self.admin.create_form,
            ctx.guild_id,
            title,
            self._destination(destination),
            description=description,
            mention=to_mention(mention),
            cooldown=cooldown,
        )
        await ctx.respond(message, ephemeral=True)

    @forms.command(name="delete", description="Deletes a form")
    async def delete_form(self, ctx: discord.ApplicationContext, form: form_option("The form to delete")):
        message = await run_blocking(self.admin.delete_form, ctx.guild_id, form)
        await ctx.respond(message, ephemeral=True)

    @forms.command(name="rename", description="Changes the title of a form")
    async def rename(
        self,
        ctx: discord.ApplicationContext,
        form: form_option("The form to modify"),
        title: discord.Option(str, "New title for the form", max_length=MODAL_TITLE_MAX_LENGTH),
    ):
        await ctx.defer(ephemeral=True)
        message = await run_blocking(self.admin.rename, FormRef(ctx.guild_id, form), title)
        await ctx.respond(message, ephemeral=True)

    @forms.command(name="description", description="Changes the description of a form")
    async def description(
        self,
        ctx: discord.ApplicationContext,
        form: form_option("The form to modify"),
        description: discord.Option(
            str, "The new text to be shown in top of responses (leave it out to clear)",
            max_length=4096, required=False, default=None,
        ),
    ):
        await ctx.defer(ephemeral=True)
        message = await run_blocking(self.admin.set_description, FormRef(ctx.guild_id, form), description)
        await ctx.respond(message, ephemeral=True)

    @forms.command(name="cooldown", description="Changes the cooldown of a form")
    async def cooldown(
        self,
        ctx: discord.ApplicationContext,
        form: form_option("The form to modify"),
        cooldown: discord.Option(
            str, "The new duration users must wait between submissions (leave it out to clear)",
            required=False, default=None,
        ),
    ):
        await ctx.defer(ephemeral=True)
        message = await run_blocking(self.admin.set_cooldown, FormRef(ctx.guild_id, form), cooldown)
        await ctx.respond(message, ephemeral=True)

    @forms.command(name="mention", description="Changes who is mentioned on submission of the form")
    async def mention(
        self,
        ctx: discord.ApplicationContext,
        form: form_option("The form to modify"),
        mention: discord.Option(
            discord.SlashCommandOptionType.mentionable,
            "New role/user to be mentioned on submission (leave it out to remove)",
            required=False, default=None,
        ),
    ):
        await ctx.defer(ephemeral=True)
        message = await run_blocking(self.admin.set_mention, FormRef(ctx.guild_id, form), to_mention(mention))
        await ctx.respond(message, ephemeral=True)

    @forms.command(name="destination", description="Changes the destination channel of a form")
    async def destination(
        self,
        ctx: discord.ApplicationContext,
        form: form_option("The form to modify"),
        destination: discord.Option(discord.TextChannel, "The new channel to create the thread under"),
    ):
        await ctx.defer(ephemeral=True)
        message = await run_blocking(
            self.admin.set_destination, FormRef(ctx.guild_id, form), self._destination(destination)
        )
        await ctx.respond(message, ephemeral=True)

    @forms.command(name="button", description="Create a button for a form")
    async def button(
        self,
        ctx: discord.ApplicationContext,
        form: form_option("The form the button opens"),
        text: discord.Option(str, "Text for the button", max_length=80),
        color: discord.Option(str, "The color of the button", choices=list(BUTTON_COLORS)),
        message: discord.Option(str, "A string to send with the button", required=False, default=None),
        emoji: discord.Option(str, "An emoji for the button", required=False, default=None),
    ):
        await ctx.defer(ephemeral=True)
        form_ref = FormRef(ctx.guild_id, form)
        await run_blocking(self.admin.get_form, form_ref)

        button_emoji = None
        if emoji is not None:
            button_emoji = parse_emoji(emoji)
            if button_emoji is None:
                await ctx.respond("Failed to parse the provided emoji", ephemeral=True)
                return

        view = discord.ui.View(timeout=None)
        view.add_item(discord.ui.Button(
            label=text,
            style=BUTTON_COLORS[color],
            custom_id=f"{CUSTOM_ID_PREFIX}{form_ref.form_id}",
            emoji=button_emoji,
        ))

        await ctx.channel.send(content=message, view=view)
        await ctx.respond("Button created", ephemeral=True)

    @forms.command(name="show", description="Shows a form")
    async def show_form(
        self,
        ctx: discord.ApplicationContext,
        form: form_option("The form to show"),
        create: discord.Option(
            bool, "Whether submitting should create a response (defaults to false)",
            required=False, default=False,
        ),
    ):
        loaded = await run_blocking(self.admin.get_form, FormRef(ctx.guild_id, form))
        spec = loaded.build_prompt()
        if spec is None:
            raise ConfigurationError("A form must have fields to be shown.")

        trigger = DiscordTriggerInteraction(ctx.interaction)
        answers = await trigger.prompt(spec)
        if answers is None:
            return

        if create:
            await self.pipeline.publish(loaded, trigger, answers)
        else:
            await trigger.acknowledge()
            await trigger.update_acknowledgement("Form was submitted; no response was created")

    @forms.command(name="details", description="Shows the details of a form")
    async def form_details(self, ctx: discord.ApplicationContext, form: form_option()):
        await ctx.defer(ephemeral=True)
        details = await run_blocking(self.admin.form_details, FormRef(ctx.guild_id, form))

        embed = discord.Embed(title=details.title, description=details.summary or None)
        for name, value in details.fields:
            embed.add_field(name=name, value=value, inline=True)
        await ctx.respond(embed=embed, ephemeral=True)

    # --- Fields ---

    @fields.command(name="add", description="Adds a field to a form")
    async def add_field(
        self,
        ctx: discord.ApplicationContext,
        form: form_option(),
        name: discord.Option(str, "The name of the field", max_length=45),
        style: discord.Option(str, "The style of the field", choices=FIELD_STYLE_CHOICES),
        placeholder: discord.Option(
            str, "Placeholder text for the field", max_length=100, required=False, default=None,
        ),
        min_length: discord.Option(
            int, "The minimum length of responses (always at least 1 if required)",
            min_value=0, max_value=FIELD_RESPONSE_MAX_LENGTH, required=False, default=None,
        ),
        max_length: discord.Option(
            int, "The maximum length of responses",
            min_value=1, max_value=FIELD_RESPONSE_MAX_LENGTH, required=False, default=None,
        ),
        required: discord.Option(
            bool, "Whether the field is required (defaults to true)", required=False, default=None,
        ),
        add_before: discord.Option(
            int, "Add this field before another existing field; otherwise, it is added to the bottom",
            autocomplete=autocomplete_field, required=False, default=None,
        ),
        inline: discord.Option(
            bool, "Whether to inline the field when printing responses (defaults to false)",
            required=False, default=None,
        ),
    ):
        await ctx.defer(ephemeral=True)
        message = await run_blocking(
            self.admin.add_field,
            FormRef(ctx.guild_id, form),
            name,
            style,
            placeholder=placeholder,
            min_length=min_length,
            max_length=max_length,
            required=required,
            add_before=add_before,
            inline=inline,
        )
        await ctx.respond(message, ephemeral=True)

    @fields.command(name="remove", description="Removes a field from a form")
    async def remove_field(
        self,
        ctx: discord.ApplicationContext,
        form: form_option(),
        field: field_option("The field to remove"),
    ):
        await ctx.defer(ephemeral=True)
        message = await run_blocking(self.admin.remove_field, FormRef(ctx.guild_id, form), field)
        await ctx.respond(message, ephemeral=True)

    @fields.command(name="rename", description="Renames a field")
    async def rename_field(
        self,
        ctx: discord.ApplicationContext,
        form: form_option(),
        field: field_option(),
        name: discord.Option(str, "The new name of the field", max_length=45),
    ):
        await ctx.defer(ephemeral=True)
        message = await run_blocking(self.admin.rename_field, FormRef(ctx.guild_id, form), field, name)
        await ctx.respond(message, ephemeral=True)

    @fields.command(name="style", description="Updates style of a field")
    async def field_style(
        self,
        ctx: discord.ApplicationContext,
        form: form_option(),
        field: field_option(),
        style: discord.Option(str, "The new style of the field", choices=FIELD_STYLE_CHOICES),
    ):
        await ctx.defer(ephemeral=True)
        message = await run_blocking(self.admin.set_field_style, FormRef(ctx.guild_id, form), field, style)
        await ctx.respond(message, ephemeral=True)

    @fields.command(name="placeholder", description="Updates placeholder of a field")
    async def field_placeholder(
        self,
        ctx: discord.ApplicationContext,
        form: form_option(),
        field: field_option(),
        placeholder: discord.Option(
            str, "New placeholder text for the field (leave it out to remove)",
            max_length=100, required=False, default=None,
        ),
    ):
        await ctx.defer(ephemeral=True)
        message = await run_blocking(self.admin.set_field_placeholder, FormRef(ctx.guild_id, form), field, placeholder)
        await ctx.respond(message, ephemeral=True)

    @fields.command(name="validation", description="Updates validation of a field")
    async def field_validation(
        self,
        ctx: discord.ApplicationContext,
        form: form_option(),
        field: field_option(),
        min_length: discord.Option(
            int, "The new minimum length of responses (always at least 1 if required)",
            min_value=0, max_value=FIELD_RESPONSE_MAX_LENGTH, required=False, default=None,
        ),
        max_length: discord.Option(
            int, "The new maximum length of responses",
            min_value=1, max_value=FIELD_RESPONSE_MAX_LENGTH, required=False, default=None,
        ),
        required: discord.Option(
            bool, "Whether the field is required (defaults to true)", required=False, default=None,
        ),
    ):
        await ctx.defer(ephemeral=True)
        message = await run_blocking(
            self.admin.set_field_validation,
            FormRef(ctx.guild_id, form), field, min_length, max_length, required
        )
        await ctx.respond(message, ephemeral=True)

    @fields.command(name="inline", description="Updates whether to inline responses to this field")
    async def field_inline(
        self,
        ctx: discord.ApplicationContext,
        form: form_option(),
        field: field_option(),
        inline: discord.Option(bool, "Whether to inline the field when printing responses"),
    ):
        await ctx.defer(ephemeral=True)
        message = await run_blocking(self.admin.set_field_inline, FormRef(ctx.guild_id, form), field, inline)
        await ctx.respond(message, ephemeral=True)

    @fields.command(name="move", description="Moves a field")
    async def move_field(
        self,
        ctx: discord.ApplicationContext,
        form: form_option(),
        field: field_option(),
        position: discord.Option(int, "The new position for this field", min_value=1, max_value=MAX_FIELDS),
    ):
        await ctx.defer(ephemeral=True)
        message = await run_blocking(self.admin.move_field, FormRef(ctx.guild_id, form), field, position)
        await ctx.respond(message, ephemeral=True)

    # --- Cooldowns ---

    @cooldowns.command(name="clear", description="Clear cooldown of user for a form")
    async def clear_cooldown(
        self,
        ctx: discord.ApplicationContext,
        form: form_option("The form to clear cooldowns for"),
        user: discord.Option(discord.User, "The user to clear cooldown for"),
    ):
        await ctx.defer(ephemeral=True)
        message = await run_blocking(self.admin.clear_cooldown, FormRef(ctx.guild_id, form), user.id, user.mention)
        await ctx.respond(message, ephemeral=True)


def create_bot(config: BotConfig, store: StateStore) -> discord.Bot:
    """Build the bot with the forms cog attached."""
    intents = discord.Intents.default()
    bot = discord.Bot(intents=intents, debug_guilds=config.guild_ids or None)
    bot.add_cog(FormsCog(bot, store))

    @bot.event
    async def on_ready():
        logger.info(f"Discord bot ready: {bot.user}")

    return bot
