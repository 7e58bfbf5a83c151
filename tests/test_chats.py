import pytest
from sqlalchemy import func, select

from studyhall.models.chat import Chat

from conftest import FakeWebSocket, auth_headers


@pytest.fixture
def users(make_user, befriend):
    async def _users(*names, friends=True):
        created = [await make_user(name) for name in names]
        if friends:
            first = created[0]
            for other in created[1:]:
                await befriend(first, other)
        return created
    return _users


async def create_group(client, owner, name, members):
    return await client.post(
        "/api/v1/chats/group",
        json={"name": name, "member_ids": [member.id for member in members]},
        headers=auth_headers(owner),
    )


async def send(client, user, chat_id, content, **extra):
    return await client.post(
        f"/api/v1/chats/{chat_id}/messages",
        json={"content": content, **extra},
        headers=auth_headers(user),
    )


class TestDirectChats:
    async def test_friends_chat_and_read_messages(self, client, users):
        alice, bob = await users("alice", "bob")

        created = await client.post("/api/v1/chats/direct", json={"user_id": bob.id}, headers=auth_headers(alice))
        assert created.status_code == 200
        chat = created.json()
        assert chat["type"] == "direct"
        assert sorted(chat["participants"]) == sorted([alice.id, bob.id])

        sent = await send(client, alice, chat["id"], "  hello bob  ")
        assert sent.status_code == 201
        assert sent.json()["content"] == "hello bob"
        assert sent.json()["sender"] == {"id": alice.id, "username": "alice"}

        unread = await client.get(f"/api/v1/chats/{chat['id']}/unread", headers=auth_headers(bob))
        assert unread.json()["unread_count"] == 1

        page = await client.get(f"/api/v1/chats/{chat['id']}/messages", headers=auth_headers(bob))
        assert page.status_code == 200
        assert [message["content"] for message in page.json()["messages"]] == ["hello bob"]

        unread = await client.get(f"/api/v1/chats/{chat['id']}/unread", headers=auth_headers(bob))
        assert unread.json()["unread_count"] == 0

    async def test_direct_chat_is_unique_per_pair(self, client, users, session_factory):
        alice, bob = await users("alice", "bob")

        first = await client.post("/api/v1/chats/direct", json={"user_id": bob.id}, headers=auth_headers(alice))
        second = await client.post("/api/v1/chats/direct", json={"user_id": alice.id}, headers=auth_headers(bob))

        assert first.json()["id"] == second.json()["id"]
        async with session_factory() as session:
            assert (await session.execute(select(func.count(Chat.id)))).scalar() == 1

    async def test_direct_chat_requires_friendship(self, client, users):
        alice, carol = await users("alice", "carol", friends=False)

        response = await client.post("/api/v1/chats/direct", json={"user_id": carol.id}, headers=auth_headers(alice))

        assert response.status_code == 403
        assert response.json()["detail"] == "You can only chat with friends"

    async def test_direct_chat_with_self_or_unknown_user(self, client, users):
        (alice,) = await users("alice")

        to_self = await client.post("/api/v1/chats/direct", json={"user_id": alice.id}, headers=auth_headers(alice))
        unknown = await client.post("/api/v1/chats/direct", json={"user_id": 9999}, headers=auth_headers(alice))

        assert to_self.status_code == 400
        assert unknown.status_code == 404

    async def test_cannot_leave_direct_chat(self, client, users):
        alice, bob = await users("alice", "bob")
        chat = (await client.post("/api/v1/chats/direct", json={"user_id": bob.id}, headers=auth_headers(alice))).json()

        response = await client.post(f"/api/v1/chats/{chat['id']}/leave", headers=auth_headers(alice))

        assert response.status_code == 400


class TestGroupChats:
    async def test_create_group_with_friends(self, client, users):
        alice, bob, carol = await users("alice", "bob", "carol")

        response = await create_group(client, alice, "Study Group", [bob, carol])

        assert response.status_code == 201
        chat = response.json()
        assert chat["type"] == "group"
        assert chat["name"] == "Study Group"
        assert chat["creator_id"] == alice.id
        assert sorted(chat["participants"]) == sorted([alice.id, bob.id, carol.id])

        page = await client.get(f"/api/v1/chats/{chat['id']}/messages", headers=auth_headers(bob))
        messages = page.json()["messages"]
        assert len(messages) == 1
        assert messages[0]["type"] == "system"
        assert messages[0]["system_action"] == "created"

    async def test_group_members_must_be_friends(self, client, users, make_user):
        alice, bob = await users("alice", "bob")
        stranger = await make_user("stranger")

        response = await create_group(client, alice, "Study Group", [bob, stranger])

        assert response.status_code == 403

    async def test_group_validation(self, client, users):
        alice, bob = await users("alice", "bob")

        blank = await create_group(client, alice, "   ", [bob])
        only_self = await create_group(client, alice, "Solo", [alice])
        empty = await client.post(
            "/api/v1/chats/group", json={"name": "Empty", "member_ids": []}, headers=auth_headers(alice)
        )

        assert blank.status_code == 400
        assert only_self.status_code == 400
        assert empty.status_code == 422

    async def test_leave_group_revokes_access(self, client, users, manager):
        alice, bob, carol = await users("alice", "bob", "carol")
        chat = (await create_group(client, alice, "Study Group", [bob, carol])).json()
        socket = FakeWebSocket()
        await manager.connect(socket, bob.id)
        manager.join_room(socket, f"chat:{chat['id']}")

        left = await client.post(f"/api/v1/chats/{chat['id']}/leave", headers=auth_headers(bob))
        assert left.status_code == 200

        detail = await client.get(f"/api/v1/chats/{chat['id']}", headers=auth_headers(alice))
        assert bob.id not in detail.json()["participants"]

        page = await client.get(f"/api/v1/chats/{chat['id']}/messages", headers=auth_headers(alice))
        last = page.json()["messages"][-1]
        assert last["system_action"] == "left"
        assert last["sender"]["id"] == bob.id

        assert (await client.get(f"/api/v1/chats/{chat['id']}/messages", headers=auth_headers(bob))).status_code == 403
        assert (await send(client, bob, chat["id"], "still here?")).status_code == 403
        assert not manager.in_room(socket, f"chat:{chat['id']}")
        assert socket.events("chat:memberRemoved")[0]["data"] == {"chat_id": chat["id"], "user_id": bob.id}

    async def test_add_member(self, client, users, make_user, befriend):
        alice, bob, carol = await users("alice", "bob", "carol")
        dave = await make_user("dave")
        chat = (await create_group(client, alice, "Study Group", [bob])).json()

        added = await client.post(
            f"/api/v1/chats/{chat['id']}/members", json={"user_id": carol.id}, headers=auth_headers(alice)
        )
        assert added.status_code == 200
        assert carol.id in added.json()["participants"]

        again = await client.post(
            f"/api/v1/chats/{chat['id']}/members", json={"user_id": carol.id}, headers=auth_headers(alice)
        )
        assert sorted(again.json()["participants"]) == sorted(added.json()["participants"])

        not_friend = await client.post(
            f"/api/v1/chats/{chat['id']}/members", json={"user_id": dave.id}, headers=auth_headers(bob)
        )
        assert not_friend.status_code == 403

        await befriend(dave, bob)
        outsider = await client.post(
            f"/api/v1/chats/{chat['id']}/members", json={"user_id": bob.id}, headers=auth_headers(dave)
        )
        assert outsider.status_code == 403

        page = await client.get(f"/api/v1/chats/{chat['id']}/messages", headers=auth_headers(carol))
        actions = [message["system_action"] for message in page.json()["messages"]]
        assert actions == ["created", "joined"]

    async def test_rename_requires_owner_or_admin(self, client, users):
        alice, bob = await users("alice", "bob")
        chat = (await create_group(client, alice, "Study Group", [bob])).json()

        by_member = await client.put(f"/api/v1/chats/{chat['id']}", json={"name": "Mine"}, headers=auth_headers(bob))
        assert by_member.status_code == 403

        by_owner = await client.put(
            f"/api/v1/chats/{chat['id']}", json={"name": "Finals Prep"}, headers=auth_headers(alice)
        )
        assert by_owner.status_code == 200
        assert by_owner.json()["name"] == "Finals Prep"

    async def test_non_member_cannot_view_chat(self, client, users, make_user):
        alice, bob = await users("alice", "bob")
        outsider = await make_user("outsider")
        chat = (await create_group(client, alice, "Study Group", [bob])).json()

        assert (await client.get(f"/api/v1/chats/{chat['id']}", headers=auth_headers(outsider))).status_code == 403
        assert (await client.get("/api/v1/chats/9999", headers=auth_headers(alice))).status_code == 404

    async def test_mute(self, client, users):
        alice, bob = await users("alice", "bob")
        chat = (await create_group(client, alice, "Study Group", [bob])).json()

        response = await client.put(
            f"/api/v1/chats/{chat['id']}/mute", json={"is_muted": True}, headers=auth_headers(bob)
        )

        assert response.json() == {"chat_id": chat["id"], "is_muted": True}
        listing = await client.get("/api/v1/chats", headers=auth_headers(bob))
        assert listing.json()["chats"][0]["is_muted"] is True


class TestChatList:
    async def test_list_orders_by_activity_with_unread_counts(self, client, users):
        alice, bob, carol = await users("alice", "bob", "carol")
        with_bob = (await client.post("/api/v1/chats/direct", json={"user_id": bob.id}, headers=auth_headers(alice))).json()
        with_carol = (await client.post("/api/v1/chats/direct", json={"user_id": carol.id}, headers=auth_headers(alice))).json()

        await send(client, bob, with_bob["id"], "first")
        await send(client, bob, with_bob["id"], "second")
        await send(client, carol, with_carol["id"], "latest")

        response = await client.get("/api/v1/chats", headers=auth_headers(alice))

        chats = response.json()["chats"]
        assert [chat["id"] for chat in chats] == [with_carol["id"], with_bob["id"]]
        assert chats[0]["participants"] == [{"id": carol.id, "username": "carol"}]
        assert chats[0]["last_message"]["content"] == "latest"
        assert chats[0]["last_message"]["sender_id"] == carol.id
        assert [chat["unread_count"] for chat in chats] == [1, 2]

    async def test_new_message_reaches_every_member_once(self, client, users, manager):
        alice, bob, carol = await users("alice", "bob", "carol")
        chat = (await create_group(client, alice, "Study Group", [bob, carol])).json()
        bob_socket = FakeWebSocket()
        carol_socket = FakeWebSocket()
        await manager.connect(bob_socket, bob.id)
        await manager.connect(carol_socket, carol.id)
        # bob is both in the chat room and his personal room
        manager.join_room(bob_socket, f"chat:{chat['id']}")

        sent = await send(client, alice, chat["id"], "quiz tomorrow")

        for socket in (bob_socket, carol_socket):
            frames = socket.events("chat:newMessage")
            assert len(frames) == 1
            assert frames[0]["data"]["id"] == sent.json()["id"]
