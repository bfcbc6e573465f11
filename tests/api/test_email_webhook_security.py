"""Provider callbacks and internal job endpoints: secrets, handshakes, malformed input."""

import base64
import json

from httpx import AsyncClient

GMAIL_PUSH = "/api/v1/email/google/push"
MS_NOTIFY = "/api/v1/email/microsoft/notify"


def _pubsub(email_address: str, history_id: str) -> dict:
    data = json.dumps({"emailAddress": email_address, "historyId": history_id})
    return {"message": {"data": base64.b64encode(data.encode()).decode(), "messageId": "1"}}


async def test_gmail_push_with_wrong_token_is_silently_acknowledged(
    client: AsyncClient, make_account, account_repo
) -> None:
    """A wrong verification token gets 200 and touches nothing."""
    account = await make_account()

    response = await client.post(
        f"{GMAIL_PUSH}?token=wrong", json=_pubsub("owner@example.com", "500")
    )

    assert response.status_code == 200
    assert response.json()["claimed"] == 0
    stored = await account_repo.get_by_id(account.id)
    assert stored.last_push_at is None
    assert stored.gmail_history_id is None


async def test_gmail_push_without_token_is_silently_acknowledged(
    client: AsyncClient, make_account, account_repo
) -> None:
    account = await make_account()
    response = await client.post(GMAIL_PUSH, json=_pubsub("owner@example.com", "500"))
    assert response.status_code == 200
    assert (await account_repo.get_by_id(account.id)).last_push_at is None


async def test_gmail_push_seeds_cursor_on_first_notification(
    client: AsyncClient, make_account, account_repo
) -> None:
    account = await make_account()

    response = await client.post(
        f"{GMAIL_PUSH}?token=push-token", json=_pubsub("owner@example.com", "500")
    )

    assert response.status_code == 200
    stored = await account_repo.get_by_id(account.id)
    assert stored.gmail_history_id == "500"
    assert stored.last_push_at is not None


async def test_gmail_push_accepts_channel_token_header(
    client: AsyncClient, make_account, account_repo
) -> None:
    account = await make_account()

    response = await client.post(
        GMAIL_PUSH,
        json=_pubsub("owner@example.com", "500"),
        headers={"X-Goog-Channel-Token": "push-token"},
    )

    assert response.status_code == 200
    assert (await account_repo.get_by_id(account.id)).gmail_history_id == "500"


async def test_gmail_push_claims_and_processes_inline(
    client: AsyncClient, make_account, event_repo, fake_providers, fake_consumer
) -> None:
    from mailbridge.infrastructure.external.email.protocols import HistoryDelta

    account = await make_account(gmail_history_id="100")
    fake_providers.gmail().list_new_message_ids.return_value = HistoryDelta(
        message_ids=["m1", "m1", "m2"], next_cursor="130"
    )

    response = await client.post(
        f"{GMAIL_PUSH}?token=push-token", json=_pubsub("owner@example.com", "130")
    )

    assert response.status_code == 200
    assert response.json() == {"ok": True, "claimed": 2, "processed": 2, "failed": 0}
    assert fake_consumer.deliver.await_count == 2
    assert len(await event_repo.list_for_account(account.id)) == 2


async def test_gmail_push_with_rejected_token_records_account_error(
    client: AsyncClient, make_account, account_repo, fake_providers, fake_consumer
) -> None:
    """An unauthorized history read is acknowledged and leaves the cursor for the next push."""
    from mailbridge.domain.exceptions import ProviderFetchFailed

    account = await make_account(gmail_history_id="100")
    fake_providers.gmail().list_new_message_ids.side_effect = ProviderFetchFailed(
        "google", "history.list", 401, "unauthorized: Invalid Credentials"
    )

    response = await client.post(
        f"{GMAIL_PUSH}?token=push-token", json=_pubsub("owner@example.com", "130")
    )

    assert response.status_code == 200
    assert response.json()["claimed"] == 0
    stored = await account_repo.get_by_id(account.id)
    assert "unauthorized" in stored.last_error
    assert stored.health == "needs_reconnect"
    assert stored.gmail_history_id == "100"
    fake_consumer.deliver.assert_not_awaited()


async def test_gmail_push_with_unexpected_history_error_is_acknowledged(
    client: AsyncClient, make_account, account_repo, fake_providers, fake_consumer
) -> None:
    account = await make_account(gmail_history_id="100")
    fake_providers.gmail().list_new_message_ids.side_effect = RuntimeError("boom")

    response = await client.post(
        f"{GMAIL_PUSH}?token=push-token", json=_pubsub("owner@example.com", "130")
    )

    assert response.status_code == 200
    stored = await account_repo.get_by_id(account.id)
    assert stored.last_error == "boom"
    assert stored.gmail_history_id == "100"


async def test_gmail_push_with_malformed_data_is_400(client: AsyncClient) -> None:
    data = base64.b64encode(b"not json").decode()
    response = await client.post(
        f"{GMAIL_PUSH}?token=push-token", json={"message": {"data": data}}
    )
    assert response.status_code == 400
    assert response.json()["error"] == "VALIDATION_ERROR"


async def test_gmail_push_with_non_json_body_is_400(client: AsyncClient) -> None:
    response = await client.post(
        f"{GMAIL_PUSH}?token=push-token",
        content=b"not json",
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 400


async def test_gmail_push_without_data_is_acknowledged(client: AsyncClient) -> None:
    response = await client.post(f"{GMAIL_PUSH}?token=push-token", json={"message": {}})
    assert response.status_code == 200
    assert response.json()["ok"] is True


async def test_microsoft_validation_handshake_get(client: AsyncClient) -> None:
    response = await client.get(MS_NOTIFY, params={"validationToken": "Validation: abc"})
    assert response.status_code == 200
    assert response.text == "Validation: abc"
    assert response.headers["content-type"].startswith("text/plain")


async def test_microsoft_validation_handshake_post(client: AsyncClient) -> None:
    response = await client.post(MS_NOTIFY, params={"validationToken": "token-123"})
    assert response.status_code == 200
    assert response.text == "token-123"


async def test_microsoft_notification_with_wrong_client_state_writes_nothing(
    client: AsyncClient, make_account, event_repo
) -> None:
    from mailbridge.domain.enums import Provider

    account = await make_account(provider=Provider.MICROSOFT, ms_subscription_id="sub1")

    response = await client.post(
        MS_NOTIFY,
        json={
            "value": [
                {
                    "subscriptionId": "sub1",
                    "clientState": "forged",
                    "resourceData": {"id": "m1"},
                }
            ]
        },
    )

    assert response.status_code == 200
    assert response.json()["claimed"] == 0
    assert await event_repo.list_for_account(account.id) == []


async def test_microsoft_notification_is_processed_inline(
    client: AsyncClient, make_account, event_repo, fake_providers, fake_consumer
) -> None:
    from mailbridge.domain.enums import Provider

    account = await make_account(provider=Provider.MICROSOFT, ms_subscription_id="sub1")
    item = {
        "subscriptionId": "sub1",
        "clientState": "expected-state",
        "resourceData": {"id": "AAMk1"},
    }

    response = await client.post(MS_NOTIFY, json={"value": [item, item]})

    assert response.status_code == 200
    assert response.json()["processed"] == 1
    fake_consumer.deliver.assert_awaited_once()
    [event] = await event_repo.list_for_account(account.id)
    assert event.provider_message_id == "AAMk1"


async def test_watchdog_requires_internal_token(client: AsyncClient) -> None:
    assert (await client.post("/api/v1/email/watchdog")).status_code == 401
    response = await client.post(
        "/api/v1/email/watchdog", headers={"X-Internal-Token": "wrong"}
    )
    assert response.status_code == 401


async def test_watchdog_runs_with_internal_token(
    client: AsyncClient, internal_headers, make_account, fake_providers
) -> None:
    account = await make_account()

    response = await client.post("/api/v1/email/watchdog", headers=internal_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    assert body["results"][0]["account_id"] == account.id
    assert body["results"][0]["status"] == "recovered"


async def test_redrive_requires_internal_token(client: AsyncClient) -> None:
    assert (await client.post("/api/v1/email/events/redrive")).status_code == 401


async def test_redrive_with_internal_token(
    client: AsyncClient, internal_headers, make_account, event_repo, fake_providers, fake_consumer
) -> None:
    from mailbridge.shared.utils.datetime import utc_now

    account = await make_account()
    claim = await event_repo.init_inbound_event(account, "m1", utc_now())
    await event_repo.mark_error(claim.event_id, "downstream 500")

    response = await client.post("/api/v1/email/events/redrive", headers=internal_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    assert body["results"][0]["status"] == "processed"
