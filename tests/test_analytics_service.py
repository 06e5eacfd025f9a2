"""
Tests for Firestore-backed analytics
"""

from unittest.mock import MagicMock

from botdesk.services.analytics_service import AnalyticsService


def test_log_failure_writes_event_and_error_report():
    service = AnalyticsService()
    firestore = MagicMock()
    service._db = firestore

    service.log_failure("stripe_webhook", "No user", parameters={"customer_id": "cus_1"},
                        category="ConsistencyWarning")

    collections = [c.args[0] for c in firestore.collection.call_args_list]
    assert collections == ["analytics_events", "error_reports"]
    report = firestore.collection.return_value.add.call_args_list[1].args[0]
    assert report["category"] == "ConsistencyWarning"
    assert report["parameters"] == {"customer_id": "cus_1"}


def test_write_failures_are_swallowed():
    service = AnalyticsService()
    firestore = MagicMock()
    firestore.collection.return_value.add.side_effect = RuntimeError("firestore down")
    service._db = firestore

    service.log_success("create_bot", user_id="u1")


def test_client_is_created_lazily(mock_firebase_admin):
    service = AnalyticsService()
    assert service._db is None

    service.log_event("opened", user_id="u1")

    assert service._db is not None
