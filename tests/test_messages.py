import pytest

from studyhall.exceptions import Forbidden, NotFound, ValidationFailed
from studyhall.services.chat_service import ChatService

from conftest import FakeWebSocket, auth_headers


@pytest.fixture
def direct_chat(make_user, befriend, session_factory):
    async def _direct_chat():
        alice = await make_user("alice")
        bob = await make_user("bob")
        await befriend(alice, bob)
        async with session_factory() as session:
            chat = await ChatService(session).get_or_create_direct_chat(alice.id, bob.id)
        return alice, bob, chat.id
    return _direct_chat


async def post_messages(db, chat_id, sender_id, *contents):
    service = ChatService(db)
    return [await service.send_message(chat_id, sender_id, content) for content in contents]


class TestMessageStore:
    async def test_messages_are_returned_oldest_first(self, db, direct_chat):
        alice, bob, chat_id = await direct_chat()
        await post_messages(db, chat_id, alice.id, "one", "two", "three")

        messages = await ChatService(db).get_messages(chat_id, bob.id)

        assert [message.content for message in messages] == ["one", "two", "three"]

    async def test_limit_returns_newest_page(self, db, direct_chat):
        alice, bob, chat_id = await direct_chat()
        await post_messages(db, chat_id, alice.id, "one", "two", "three", "four")

        messages = await ChatService(db).get_messages(chat_id, bob.id, limit=2)

        assert [message.content for message in messages] == ["three", "four"]

    async def test_before_and_after_cursors(self, db, direct_chat):
        alice, bob, chat_id = await direct_chat()
        sent = await post_messages(db, chat_id, alice.id, "one", "two", "three", "four")
        service = ChatService(db)

        older = await service.get_messages(chat_id, bob.id, before=sent[2].created_at)
        newer = await service.get_messages(chat_id, bob.id, after=sent[1].created_at)
        newest_after = await service.get_messages(chat_id, bob.id, after=sent[0].created_at, limit=2)

        assert [message.content for message in older] == ["one", "two"]
        assert [message.content for message in newer] == ["three", "four"]
        assert [message.content for message in newest_after] == ["three", "four"]

    async def test_soft_deleted_messages_are_hidden(self, db, direct_chat):
        alice, bob, chat_id = await direct_chat()
        kept, removed = await post_messages(db, chat_id, alice.id, "keep", "remove")
        service = ChatService(db)

        await service.delete_message(chat_id, removed.id, alice.id)

        messages = await service.get_messages(chat_id, bob.id)
        assert [message.id for message in messages] == [kept.id]

    async def test_only_sender_can_edit_or_delete(self, db, direct_chat):
        alice, bob, chat_id = await direct_chat()
        (message,) = await post_messages(db, chat_id, alice.id, "original")
        service = ChatService(db)

        with pytest.raises(Forbidden):
            await service.edit_message(chat_id, message.id, bob.id, "hijacked")
        with pytest.raises(Forbidden):
            await service.delete_message(chat_id, message.id, bob.id)

        edited = await service.edit_message(chat_id, message.id, alice.id, "revised")
        assert edited.content == "revised"
        assert edited.is_edited is True

    async def test_deleted_message_cannot_be_edited(self, db, direct_chat):
        alice, bob, chat_id = await direct_chat()
        (message,) = await post_messages(db, chat_id, alice.id, "gone soon")
        service = ChatService(db)
        await service.delete_message(chat_id, message.id, alice.id)

        with pytest.raises(NotFound):
            await service.edit_message(chat_id, message.id, alice.id, "too late")

    async def test_content_is_validated(self, db, direct_chat):
        alice, bob, chat_id = await direct_chat()
        service = ChatService(db)

        with pytest.raises(ValidationFailed):
            await service.send_message(chat_id, alice.id, "   ")
        with pytest.raises(ValidationFailed):
            await service.send_message(chat_id, alice.id, "x" * 5001)

        message = await service.send_message(chat_id, alice.id, "x" * 5000)
        assert len(message.content) == 5000

    async def test_non_member_is_checked_before_content(self, db, direct_chat, make_user):
        alice, bob, chat_id = await direct_chat()
        outsider = await make_user("outsider")
        service = ChatService(db)

        with pytest.raises(Forbidden):
            await service.send_message(chat_id, outsider.id, "")
        with pytest.raises(Forbidden):
            await service.get_messages(chat_id, outsider.id)

    async def test_client_message_id_deduplicates(self, db, direct_chat):
        alice, bob, chat_id = await direct_chat()
        service = ChatService(db)

        first = await service.send_message(chat_id, alice.id, "hello", client_message_id="c-1")
        retry = await service.send_message(chat_id, alice.id, "hello", client_message_id="c-1")

        assert retry.id == first.id
        assert len(await service.get_messages(chat_id, bob.id)) == 1

    async def test_last_message_snapshot_is_truncated(self, db, direct_chat):
        alice, bob, chat_id = await direct_chat()
        service = ChatService(db)
        await service.send_message(chat_id, alice.id, "y" * 300)

        chat = await service.get_chat(chat_id, bob.id)

        assert chat.last_message["content"] == "y" * 100
        assert chat.last_message["sender_id"] == alice.id


class TestUnreadTracking:
    async def test_unread_excludes_own_and_deleted_messages(self, db, direct_chat):
        alice, bob, chat_id = await direct_chat()
        service = ChatService(db)
        await post_messages(db, chat_id, alice.id, "a1", "a2")
        (gone,) = await post_messages(db, chat_id, alice.id, "a3")
        await post_messages(db, chat_id, bob.id, "b1")
        await service.delete_message(chat_id, gone.id, alice.id)

        assert await service.unread_count(chat_id, bob.id) == 2
        assert await service.unread_count(chat_id, alice.id) == 1

    async def test_mark_read_defaults_to_latest(self, db, direct_chat):
        alice, bob, chat_id = await direct_chat()
        await post_messages(db, chat_id, alice.id, "a1", "a2")

        assert await ChatService(db).mark_read(chat_id, bob.id) == 0

    async def test_read_cursor_never_moves_backwards(self, db, direct_chat):
        alice, bob, chat_id = await direct_chat()
        first, second, third = await post_messages(db, chat_id, alice.id, "a1", "a2", "a3")
        service = ChatService(db)

        assert await service.mark_read(chat_id, bob.id, second.id) == 1
        assert await service.mark_read(chat_id, bob.id, first.id) == 1
        assert await service.mark_read(chat_id, bob.id, third.id) == 0

    async def test_mark_read_rejects_message_from_other_chat(self, db, direct_chat):
        alice, bob, chat_id = await direct_chat()

        with pytest.raises(NotFound):
            await ChatService(db).mark_read(chat_id, bob.id, 9999)


class TestMessageRoutes:
    async def test_send_edit_delete_over_http(self, client, direct_chat, manager):
        alice, bob, chat_id = await direct_chat()
        bob_socket = FakeWebSocket()
        await manager.connect(bob_socket, bob.id)

        sent = await client.post(
            f"/api/v1/chats/{chat_id}/messages", json={"content": "draft"}, headers=auth_headers(alice)
        )
        assert sent.status_code == 201
        message_id = sent.json()["id"]

        edited = await client.patch(
            f"/api/v1/chats/{chat_id}/messages/{message_id}", json={"content": "final"}, headers=auth_headers(alice)
        )
        assert edited.status_code == 200
        assert edited.json()["is_edited"] is True

        deleted = await client.delete(f"/api/v1/chats/{chat_id}/messages/{message_id}", headers=auth_headers(alice))
        assert deleted.status_code == 204

        assert [frame["type"] for frame in bob_socket.sent] == [
            "chat:newMessage",
            "chat:messageUpdated",
            "chat:messageDeleted",
        ]
        assert bob_socket.sent[2]["data"] == {"chat_id": chat_id, "message_id": message_id}

    async def test_read_and_unread_routes(self, client, direct_chat, session_factory):
        alice, bob, chat_id = await direct_chat()
        async with session_factory() as session:
            await post_messages(session, chat_id, alice.id, "a1", "a2")

        unread = await client.get(f"/api/v1/chats/{chat_id}/unread", headers=auth_headers(bob))
        assert unread.json() == {"chat_id": chat_id, "unread_count": 2}

        read = await client.post(f"/api/v1/chats/{chat_id}/read", headers=auth_headers(bob))
        assert read.json() == {"chat_id": chat_id, "unread_count": 0}

    async def test_page_limit_is_capped(self, client, direct_chat):
        alice, bob, chat_id = await direct_chat()

        response = await client.get(
            f"/api/v1/chats/{chat_id}/messages", params={"limit": 101}, headers=auth_headers(bob)
        )

        assert response.status_code == 422

    async def test_oversized_message_is_rejected_by_schema(self, client, direct_chat):
        alice, bob, chat_id = await direct_chat()

        response = await client.post(
            f"/api/v1/chats/{chat_id}/messages", json={"content": "x" * 5001}, headers=auth_headers(alice)
        )

        assert response.status_code == 422

    async def test_posting_is_rate_limited(self, client, direct_chat):
        alice, bob, chat_id = await direct_chat()

        statuses = []
        for index in range(11):
            response = await client.post(
                f"/api/v1/chats/{chat_id}/messages", json={"content": f"m{index}"}, headers=auth_headers(alice)
            )
            statuses.append(response.status_code)

        assert statuses[:10] == [201] * 10
        assert statuses[10] == 429
