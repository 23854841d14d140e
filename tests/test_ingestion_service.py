import base64
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock, patch

from sqlalchemy.exc import OperationalError

from app.models import Provider
from app.services.ingestion_service import ingest_billing_payload, ingest_chat_payload
from app.services.text_crypto import decrypt_text


def chat_payload(*messages, statuses=None):
    value = {"messages": list(messages)}
    if statuses:
        value = {"statuses": statuses}
    return json.dumps({"entry": [{"changes": [{"value": value}]}]}).encode("utf-8")


def text_message(message_id="wamid.1", body="hello there"):
    return {"id": message_id, "from": "15551234567", "type": "text", "text": {"body": body}}


class TestIngestChat:
    def test_text_messages_enqueued(self, db_session, make_settings):
        with patch("app.services.ingestion_service.enqueue_event", return_value=True) as enqueue:
            inserted = ingest_chat_payload(
                chat_payload(text_message("a"), text_message("b")), lambda: db_session, make_settings()
            )

        assert inserted == 2
        kwargs = enqueue.call_args_list[0].kwargs
        assert kwargs["provider"] == Provider.CHAT
        assert kwargs["provider_event_id"] == "a"
        assert kwargs["sender"] == "+15551234567"
        assert kwargs["meta"]["text"] == "hello there"
        assert kwargs["next_attempt_at"] is None
        assert db_session.close.call_count == 2

    def test_text_sealed_when_key_configured(self, db_session, make_settings):
        key_b64 = base64.b64encode(b"k" * 32).decode("ascii")
        with patch("app.services.ingestion_service.enqueue_event", return_value=True) as enqueue:
            ingest_chat_payload(chat_payload(text_message()), lambda: db_session, make_settings(text_enc_key_b64=key_b64))

        meta = enqueue.call_args.kwargs["meta"]
        assert "text" not in meta
        assert "hello there" not in json.dumps(meta)
        assert decrypt_text(meta["text_enc"], b"k" * 32) == "hello there"

    def test_duplicates_not_counted(self, db_session, make_settings):
        with patch("app.services.ingestion_service.enqueue_event", return_value=False):
            assert ingest_chat_payload(chat_payload(text_message()), lambda: db_session, make_settings()) == 0

    def test_statuses_and_media_dropped(self, db_session, make_settings):
        image = {"id": "img", "from": "1555", "type": "image", "image": {"id": "m1"}}
        with patch("app.services.ingestion_service.enqueue_event") as enqueue:
            ingest_chat_payload(chat_payload(image), lambda: db_session, make_settings())
            ingest_chat_payload(
                chat_payload(statuses=[{"id": "s", "status": "read", "recipient_id": "1555"}]),
                lambda: db_session,
                make_settings(),
            )
        enqueue.assert_not_called()

    def test_burst_window_delays_processing(self, db_session, make_settings):
        before = datetime.now(timezone.utc)
        with patch("app.services.ingestion_service.enqueue_event", return_value=True) as enqueue:
            ingest_chat_payload(chat_payload(text_message()), lambda: db_session, make_settings(chat_burst_window_seconds=30))
        next_attempt_at = enqueue.call_args.kwargs["next_attempt_at"]
        assert next_attempt_at >= before + timedelta(seconds=30)

    def test_invalid_json_dropped(self, db_session, make_settings):
        assert ingest_chat_payload(b"{oops", lambda: db_session, make_settings()) == 0

    def test_store_outage_is_logged_not_raised(self, make_settings):
        session = Mock()
        session.execute.side_effect = OperationalError("INSERT", {}, Exception("down"))
        assert ingest_chat_payload(chat_payload(text_message()), lambda: session, make_settings()) == 0
        session.rollback.assert_called_once()
        session.close.assert_called_once()


class TestIngestBilling:
    def test_enqueued_with_composite_event_id(self, db_session):
        body = json.dumps(
            {
                "meta": {"event_name": "subscription_cancelled", "custom_data": {"wa_number": "15551234567"}},
                "data": {"id": "sub_1", "type": "subscriptions", "attributes": {"status": "cancelled"}},
            }
        ).encode("utf-8")
        with patch("app.services.ingestion_service.enqueue_event", return_value=True) as enqueue:
            assert ingest_billing_payload(body, lambda: db_session) is True

        kwargs = enqueue.call_args.kwargs
        assert kwargs["provider"] == Provider.BILLING
        assert kwargs["provider_event_id"] == f"subscription_cancelled:sub_1:{kwargs['payload_hash']}"
        assert kwargs["event_type"] == "subscription_cancelled"
        assert kwargs["meta"]["subscription_id"] == "sub_1"

    def test_repeat_events_for_one_subscription_both_enqueued(self, db_session):
        def body(status):
            return json.dumps(
                {
                    "meta": {"event_name": "subscription_cancelled", "custom_data": {"wa_number": "15551234567"}},
                    "data": {"id": "sub_1", "type": "subscriptions", "attributes": {"status": status}},
                }
            ).encode("utf-8")

        with patch("app.services.ingestion_service.enqueue_event", return_value=True) as enqueue:
            assert ingest_billing_payload(body("cancelled"), lambda: db_session) is True
            assert ingest_billing_payload(body("expired"), lambda: db_session) is True

        first, second = (call.kwargs["provider_event_id"] for call in enqueue.call_args_list)
        assert first != second

    def test_malformed_body_dropped(self, db_session):
        with patch("app.services.ingestion_service.enqueue_event") as enqueue:
            assert ingest_billing_payload(b"not json", lambda: db_session) is False
        enqueue.assert_not_called()
