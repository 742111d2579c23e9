import asyncio

import pytest
from sqlmodel import select

from core import database
from core.exceptions import ForbiddenError, InvalidArgumentError, NotFoundError
from core.models import Chat, ChatMessage, new_id
from services.notification_service import NEW_CHAT, NEW_MESSAGE


@pytest.fixture
async def pair(user_factory):
    alice = await user_factory(full_name="Alice")
    bob = await user_factory(full_name="Bob")
    return alice, bob


async def count_chats():
    async with database.session_scope() as session:
        return len((await session.exec(select(Chat))).all())


class TestStartOrGetChat:
    """Test chat creation and the pair-keyed dedup."""

    @pytest.mark.asyncio
    async def test_creates_chat_without_post(self, services, pair):
        alice, bob = pair

        chat = await services.chats.start_or_get_chat(alice.id, bob.id)

        assert chat.created is True
        assert chat.last_message == "Chat started"
        assert chat.post_id is None
        assert chat.recipient.id == bob.id
        assert chat.recipient.name == "Bob"
        messages = await services.chats.get_messages(chat.id, alice.id)
        assert messages.messages == []

    @pytest.mark.asyncio
    async def test_creates_chat_with_post_seed_message(self, services, pair):
        alice, bob = pair
        post = await services.posts.create_post(bob.id, "x" * 80)

        chat = await services.chats.start_or_get_chat(alice.id, bob.id, post.id)

        expected = f"Chat started for post: {'x' * 50}..."
        assert chat.last_message == expected
        assert chat.post_id == post.id
        log = await services.chats.get_messages(chat.id, alice.id)
        assert [m.text for m in log.messages] == [expected]
        assert log.messages[0].is_sent is True

    @pytest.mark.asyncio
    async def test_pair_is_unordered(self, services, pair):
        alice, bob = pair
        p1 = await services.posts.create_post(bob.id, "first post")
        p2 = await services.posts.create_post(alice.id, "second post")

        first = await services.chats.start_or_get_chat(alice.id, bob.id, p1.id)
        second = await services.chats.start_or_get_chat(bob.id, alice.id, p2.id)

        assert first.id == second.id
        assert second.created is False
        # Already linked to p1, not overwritten
        assert second.post_id == p1.id
        assert await count_chats() == 1

    @pytest.mark.asyncio
    async def test_backfills_post_when_missing(self, services, pair):
        alice, bob = pair
        post = await services.posts.create_post(bob.id, "backfill me")

        first = await services.chats.start_or_get_chat(alice.id, bob.id)
        second = await services.chats.start_or_get_chat(bob.id, alice.id, post.id)

        assert second.id == first.id
        assert second.post_id == post.id
        assert second.last_message == "Chat started for post: backfill me..."
        assert second.updated_at >= first.updated_at

    @pytest.mark.asyncio
    async def test_rejects_self_chat(self, services, pair):
        alice, _ = pair
        with pytest.raises(InvalidArgumentError):
            await services.chats.start_or_get_chat(alice.id, alice.id)

    @pytest.mark.asyncio
    async def test_rejects_malformed_recipient(self, services, pair):
        alice, _ = pair
        with pytest.raises(InvalidArgumentError):
            await services.chats.start_or_get_chat(alice.id, "bob")

    @pytest.mark.asyncio
    async def test_unknown_user_or_post(self, services, pair):
        alice, bob = pair
        with pytest.raises(NotFoundError):
            await services.chats.start_or_get_chat(alice.id, new_id())
        with pytest.raises(NotFoundError):
            await services.chats.start_or_get_chat(alice.id, bob.id, new_id())

    @pytest.mark.asyncio
    async def test_new_chat_pushed_to_both_sides(self, services, pair, make_handle):
        alice, bob = pair
        alice_handle, bob_handle = make_handle(), make_handle()
        await services.tracker.connect(alice.id, alice_handle)
        await services.tracker.connect(bob.id, bob_handle)

        chat = await services.chats.start_or_get_chat(alice.id, bob.id)
        await services.chats.start_or_get_chat(bob.id, alice.id)

        [to_alice] = alice_handle.events(NEW_CHAT)
        [to_bob] = bob_handle.events(NEW_CHAT)
        assert to_alice["id"] == to_bob["id"] == chat.id
        assert to_alice["recipient"]["id"] == bob.id
        assert to_bob["recipient"]["id"] == alice.id

    @pytest.mark.asyncio
    async def test_concurrent_starts_create_one_chat(self, services, pair):
        alice, bob = pair

        results = await asyncio.gather(
            services.chats.start_or_get_chat(alice.id, bob.id),
            services.chats.start_or_get_chat(bob.id, alice.id),
        )

        assert results[0].id == results[1].id
        assert await count_chats() == 1


class TestChatAccess:
    """Test listing, reading and authorization."""

    @pytest.mark.asyncio
    async def test_list_chats_sorted_by_activity(self, services, user_factory):
        me = await user_factory()
        first = await user_factory()
        second = await user_factory()

        older = await services.chats.start_or_get_chat(me.id, first.id)
        newer = await services.chats.start_or_get_chat(me.id, second.id)

        chats = await services.chats.list_chats(me.id)
        assert [c.id for c in chats] == [newer.id, older.id]

        await services.chats.send_message(older.id, first.id, "bump")
        chats = await services.chats.list_chats(me.id)
        assert [c.id for c in chats] == [older.id, newer.id]
        assert chats[0].last_message == "bump"
        assert chats[0].recipient.id == first.id

    @pytest.mark.asyncio
    async def test_non_participant_is_forbidden(self, services, pair, user_factory):
        alice, bob = pair
        outsider = await user_factory()
        chat = await services.chats.start_or_get_chat(alice.id, bob.id)

        with pytest.raises(ForbiddenError):
            await services.chats.get_chat(chat.id, outsider.id)
        with pytest.raises(ForbiddenError):
            await services.chats.get_messages(chat.id, outsider.id)
        with pytest.raises(ForbiddenError):
            await services.chats.send_message(chat.id, outsider.id, "hi")

    @pytest.mark.asyncio
    async def test_missing_chat(self, services, pair):
        alice, _ = pair
        with pytest.raises(NotFoundError):
            await services.chats.get_chat(new_id(), alice.id)

    @pytest.mark.asyncio
    async def test_get_chat_resolves_counterparty(self, services, pair):
        alice, bob = pair
        chat = await services.chats.start_or_get_chat(alice.id, bob.id)

        seen_by_bob = await services.chats.get_chat(chat.id, bob.id)

        assert seen_by_bob.recipient.id == alice.id
        assert seen_by_bob.recipient.name == "Alice"


class TestSendMessage:
    """Test message append, ordering and push."""

    @pytest.mark.asyncio
    async def test_messages_keep_send_order(self, services, pair):
        alice, bob = pair
        chat = await services.chats.start_or_get_chat(alice.id, bob.id)

        await services.chats.send_message(chat.id, alice.id, "m1")
        await services.chats.send_message(chat.id, bob.id, "m2")
        await services.chats.send_message(chat.id, alice.id, "m3")

        log = await services.chats.get_messages(chat.id, alice.id)
        assert [(m.text, m.is_sent) for m in log.messages] == [
            ("m1", True),
            ("m2", False),
            ("m3", True),
        ]
        bob_view = await services.chats.get_messages(chat.id, bob.id)
        assert [m.is_sent for m in bob_view.messages] == [False, True, False]
        assert bob_view.recipient.id == alice.id

    @pytest.mark.asyncio
    async def test_text_is_trimmed(self, services, pair):
        alice, bob = pair
        chat = await services.chats.start_or_get_chat(alice.id, bob.id)

        sent = await services.chats.send_message(chat.id, alice.id, "  hello there \n")

        assert sent.text == "hello there"
        assert sent.is_sent is True
        log = await services.chats.get_messages(chat.id, bob.id)
        assert log.messages[-1].text == "hello there"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   ", None, "x" * 1001])
    async def test_invalid_text_rejected(self, services, pair, text):
        alice, bob = pair
        chat = await services.chats.start_or_get_chat(alice.id, bob.id)

        with pytest.raises(InvalidArgumentError):
            await services.chats.send_message(chat.id, alice.id, text)

    @pytest.mark.asyncio
    async def test_new_message_pushed_to_recipient_only(self, services, pair, make_handle):
        alice, bob = pair
        chat = await services.chats.start_or_get_chat(alice.id, bob.id)
        alice_handle, bob_handle = make_handle(), make_handle()
        await services.tracker.connect(alice.id, alice_handle)
        await services.tracker.connect(bob.id, bob_handle)

        sent = await services.chats.send_message(chat.id, alice.id, "ping")

        [event] = bob_handle.events(NEW_MESSAGE)
        assert event["chatId"] == chat.id
        assert event["message"]["id"] == sent.id
        assert event["message"]["text"] == "ping"
        assert event["message"]["isSent"] is False
        assert alice_handle.events(NEW_MESSAGE) == []

    @pytest.mark.asyncio
    async def test_offline_recipient_does_not_fail_send(self, services, pair):
        alice, bob = pair
        chat = await services.chats.start_or_get_chat(alice.id, bob.id)

        sent = await services.chats.send_message(chat.id, alice.id, "are you there?")

        async with database.session_scope() as session:
            rows = (await session.exec(select(ChatMessage))).all()
        assert [row.id for row in rows] == [sent.id]
