"""Integration tests for account connection and link management endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING

from tests.conftest import (
    DESTINATION_ID,
    SOURCE_ID,
    FakeDestinationClient,
    FakeSourceClient,
    add_destination_account,
    add_source_account,
    auth_headers,
    create_test_client,
    create_user,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from skybridge.config import Settings


class TestListAccounts:
    async def test_lists_both_kinds(
        self, test_settings: Settings, db_session: AsyncSession
    ) -> None:
        user = await create_user(db_session)
        await add_source_account(db_session, user.id)
        await add_destination_account(db_session, user.id)

        async with create_test_client(test_settings) as client:
            resp = await client.get("/api/accounts", headers=auth_headers(user.id))

        assert resp.status_code == 200
        data = resp.json()
        assert [a["id"] for a in data["source_accounts"]] == [SOURCE_ID]
        assert data["source_accounts"][0]["connected"] is True
        assert [a["id"] for a in data["destination_accounts"]] == [DESTINATION_ID]
        assert data["destination_accounts"][0]["reconnect_required"] is False
        assert "access_token" not in data["source_accounts"][0]

    async def test_requires_auth(self, test_settings: Settings) -> None:
        async with create_test_client(test_settings) as client:
            resp = await client.get("/api/accounts")
        assert resp.status_code == 401


class TestLinks:
    async def test_link_lifecycle(self, test_settings: Settings, db_session: AsyncSession) -> None:
        user = await create_user(db_session)
        await add_source_account(db_session, user.id)
        await add_destination_account(db_session, user.id)
        headers = auth_headers(user.id)
        body = {"source_account_id": SOURCE_ID, "destination_account_id": DESTINATION_ID}

        async with create_test_client(test_settings) as client:
            created = await client.post("/api/accounts/link", json=body, headers=headers)
            duplicate = await client.post("/api/accounts/link", json=body, headers=headers)
            listed = await client.get("/api/accounts/links", headers=headers)
            link_id = created.json()["link"]["id"]
            deleted = await client.delete(f"/api/accounts/links/{link_id}", headers=headers)
            after_delete = await client.get("/api/accounts/links", headers=headers)
            reactivated = await client.post("/api/accounts/link", json=body, headers=headers)

        assert created.status_code == 201
        assert created.json()["outcome"] == "created"
        assert created.json()["link"]["active"] is True
        assert duplicate.status_code == 409
        links = listed.json()["links"]
        assert len(links) == 1
        assert links[0]["source_account"]["username"] == "alice_x"
        assert links[0]["destination_account"]["id"] == DESTINATION_ID
        assert deleted.status_code == 204
        assert after_delete.json() == {"links": []}
        assert reactivated.status_code == 200
        assert reactivated.json()["outcome"] == "reactivated"
        assert reactivated.json()["link"]["id"] == link_id

    async def test_link_foreign_account_is_404(
        self, test_settings: Settings, db_session: AsyncSession
    ) -> None:
        alice = await create_user(db_session, "alice@example.com")
        bob = await create_user(db_session, "bob@example.com")
        await add_source_account(db_session, alice.id)
        await add_destination_account(db_session, bob.id)

        async with create_test_client(test_settings) as client:
            resp = await client.post(
                "/api/accounts/link",
                json={"source_account_id": SOURCE_ID, "destination_account_id": DESTINATION_ID},
                headers=auth_headers(alice.id),
            )

        assert resp.status_code == 404

    async def test_empty_ids_rejected(
        self, test_settings: Settings, db_session: AsyncSession
    ) -> None:
        user = await create_user(db_session)
        async with create_test_client(test_settings) as client:
            resp = await client.post(
                "/api/accounts/link",
                json={"source_account_id": "", "destination_account_id": DESTINATION_ID},
                headers=auth_headers(user.id),
            )
        assert resp.status_code == 422

    async def test_delete_unknown_link_is_404(
        self, test_settings: Settings, db_session: AsyncSession
    ) -> None:
        user = await create_user(db_session)
        async with create_test_client(test_settings) as client:
            resp = await client.delete("/api/accounts/links/42", headers=auth_headers(user.id))
        assert resp.status_code == 404

    async def test_unlinking_last_link_clears_link_flags(
        self, test_settings: Settings, db_session: AsyncSession
    ) -> None:
        user = await create_user(db_session)
        await add_source_account(db_session, user.id)
        await add_destination_account(db_session, user.id)
        headers = auth_headers(user.id)

        async with create_test_client(test_settings) as client:
            created = await client.post(
                "/api/accounts/link",
                json={"source_account_id": SOURCE_ID, "destination_account_id": DESTINATION_ID},
                headers=headers,
            )
            await client.delete(
                f"/api/accounts/links/{created.json()['link']['id']}", headers=headers
            )
            accounts = await client.get("/api/accounts", headers=headers)

        source = accounts.json()["source_accounts"][0]
        assert source["is_connected"] is False
        assert source["connected"] is True
        assert accounts.json()["destination_accounts"][0]["is_connected"] is False


class TestXOAuth:
    async def test_authorize_then_callback_stores_account(
        self,
        test_settings: Settings,
        db_session: AsyncSession,
        source_client: FakeSourceClient,
    ) -> None:
        user = await create_user(db_session)

        async with create_test_client(test_settings, source_client=source_client) as client:
            start = await client.post("/api/accounts/x/authorize", headers=auth_headers(user.id))
            callback = await client.get(
                "/api/accounts/x/callback", params={"code": "code-1", "state": "state-123"}
            )
            replay = await client.get(
                "/api/accounts/x/callback", params={"code": "code-1", "state": "state-123"}
            )
            accounts = await client.get("/api/accounts", headers=auth_headers(user.id))

        assert start.status_code == 200
        assert start.json()["authorization_url"].startswith("https://x.com/i/oauth2/authorize")
        assert callback.status_code == 200
        assert callback.json()["id"] == SOURCE_ID
        assert callback.json()["username"] == "alice_x"
        assert source_client.exchange_calls == [("code-1", "state-123", "verifier-123")]
        assert replay.status_code == 400
        assert [a["id"] for a in accounts.json()["source_accounts"]] == [SOURCE_ID]

    async def test_unknown_state_rejected(self, test_settings: Settings) -> None:
        async with create_test_client(test_settings) as client:
            resp = await client.get(
                "/api/accounts/x/callback", params={"code": "code-1", "state": "forged"}
            )
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid or expired OAuth state"

    async def test_rejected_code_is_upstream_auth_failure(
        self,
        test_settings: Settings,
        db_session: AsyncSession,
        source_client: FakeSourceClient,
    ) -> None:
        user = await create_user(db_session)

        async with create_test_client(test_settings, source_client=source_client) as client:
            await client.post("/api/accounts/x/authorize", headers=auth_headers(user.id))
            resp = await client.get(
                "/api/accounts/x/callback",
                params={"code": "bad-code", "state": "state-123"},
            )

        assert resp.status_code == 502
        assert "reconnect required" in resp.json()["detail"]

    async def test_authorize_requires_auth(self, test_settings: Settings) -> None:
        async with create_test_client(test_settings) as client:
            resp = await client.post("/api/accounts/x/authorize")
        assert resp.status_code == 401


class TestBlueskyConnect:
    async def test_connect_stores_destination(
        self,
        test_settings: Settings,
        db_session: AsyncSession,
        destination_client: FakeDestinationClient,
    ) -> None:
        user = await create_user(db_session)

        async with create_test_client(
            test_settings, destination_client=destination_client
        ) as client:
            resp = await client.post(
                "/api/accounts/bluesky/connect",
                json={"identifier": "alice.bsky.social", "password": "app-password"},
                headers=auth_headers(user.id),
            )

        assert resp.status_code == 200
        data = resp.json()
        assert data["id"] == DESTINATION_ID
        assert data["username"] == "alice.bsky.social"
        assert data["is_connected"] is True
        assert data["reconnect_required"] is False

    async def test_wrong_password(
        self,
        test_settings: Settings,
        db_session: AsyncSession,
        destination_client: FakeDestinationClient,
    ) -> None:
        user = await create_user(db_session)

        async with create_test_client(
            test_settings, destination_client=destination_client
        ) as client:
            resp = await client.post(
                "/api/accounts/bluesky/connect",
                json={"identifier": "alice.bsky.social", "password": "wrong-password"},
                headers=auth_headers(user.id),
            )
            accounts = await client.get("/api/accounts", headers=auth_headers(user.id))

        assert resp.status_code == 502
        assert accounts.json()["destination_accounts"] == []
