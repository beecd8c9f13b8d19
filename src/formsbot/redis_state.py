"""Redis backend for forms and cooldowns.

Keyspace:
    forms:{guild_id}                      hash, form id -> JSON form
    forms:{guild_id}:{form_id}:{user_id}  cooldown marker with EX = seconds
"""

import logging
import math
from datetime import timedelta

from redis import Redis
from redis.exceptions import RedisError

from .errors import TransportError
from .models import Form, FormField, FormId, FormRef
from .state import deserialize_form, serialize_form

logger = logging.getLogger(__name__)


def get_forms_key(guild_id: int) -> str:
    return f"forms:{guild_id}"


def get_cooldown_key(form_ref: FormRef, user_id: int) -> str:
    return f"forms:{form_ref.guild_id}:{form_ref.form_id}:{user_id}"


class RedisStateStore:
    """Form store and cooldown tracker on a Redis server."""

    def __init__(self, client: Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str, socket_timeout: float = 5.0, socket_connect_timeout: float = 2.0) -> "RedisStateStore":
        client = Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_connect_timeout,
            retry_on_timeout=True,
        )
        return cls(client)

    def close(self) -> None:
        self.client.close()

    # --- Forms ---

    def get_form(self, form_ref: FormRef) -> Form | None:
        try:
            data = self.client.hget(get_forms_key(form_ref.guild_id), form_ref.form_id)
        except RedisError as e:
            raise TransportError(f"Failed to load form {form_ref.form_id}: {e}") from e
        if data is None:
            return None
        return deserialize_form(data)

    def save_form(self, guild_id: int, form: Form) -> None:
        try:
            self.client.hset(get_forms_key(guild_id), form.id, serialize_form(form))
        except RedisError as e:
            raise TransportError(f"Failed to save form {form.id}: {e}") from e
        logger.debug(f"Saved form {form.id} in guild {guild_id}")

    def delete_form(self, guild_id: int, form_id: FormId) -> bool:
        try:
            return self.client.hdel(get_forms_key(guild_id), form_id) > 0
        except RedisError as e:
            raise TransportError(f"Failed to delete form {form_id}: {e}") from e

    def get_form_ids(self, guild_id: int) -> list[tuple[FormId, str]]:
        try:
            values = self.client.hvals(get_forms_key(guild_id))
        except RedisError as e:
            raise TransportError(f"Failed to list forms of guild {guild_id}: {e}") from e
        forms = [deserialize_form(v) for v in values]
        return sorted(((f.id, f.title) for f in forms), key=lambda pair: pair[1])

    def get_fields(self, form_ref: FormRef) -> list[FormField] | None:
        form = self.get_form(form_ref)
        return form.fields if form else None

    # --- Cooldowns ---

    def cooldown_remaining(self, form_ref: FormRef, user_id: int) -> timedelta | None:
        try:
            ttl = self.client.ttl(get_cooldown_key(form_ref, user_id))
        except RedisError as e:
            raise TransportError(f"Failed to read cooldown: {e}") from e
        # -2 means no key, -1 means no expiry; neither is a cooldown
        if ttl is None or ttl <= 0:
            return None
        return timedelta(seconds=ttl)

    def trigger_cooldown(self, form_ref: FormRef, user_id: int, duration: timedelta | None) -> None:
        if duration is None or duration.total_seconds() <= 0:
            return
        seconds = max(1, math.ceil(duration.total_seconds()))
        try:
            self.client.set(get_cooldown_key(form_ref, user_id), 1, ex=seconds)
        except RedisError as e:
            raise TransportError(f"Failed to set cooldown: {e}") from e

    def clear_cooldown(self, form_ref: FormRef, user_id: int) -> bool:
        try:
            return self.client.delete(get_cooldown_key(form_ref, user_id)) > 0
        except RedisError as e:
            raise TransportError(f"Failed to clear cooldown: {e}") from e
