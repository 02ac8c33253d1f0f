from unittest.mock import patch

import pytest

from models.notification import Notification
from services import notifications


class TestEmit:
    """Notification emitter"""

    def test_creates_notification(self, db):
        n = notifications.emit(db, notifications.ORDER, {"id": 7}, title="New Order Received", message="Order ORD123 placed.")

        assert n.id is not None
        assert n.entity_id == "7"
        assert n.user_id is None
        assert n.read is False
        assert n.triggered_by == "System"

    def test_dedupes_unread_by_type_and_entity(self, db):
        first = notifications.emit(db, notifications.ORDER, {"id": 7}, title="a")
        second = notifications.emit(db, notifications.ORDER, {"id": 7}, title="b")

        assert second.id == first.id
        assert db.query(Notification).count() == 1

    def test_same_entity_different_type_is_distinct(self, db):
        notifications.emit(db, notifications.ORDER, {"id": 7})
        notifications.emit(db, notifications.ORDER_CONFIRMATION, {"id": 7})
        assert db.query(Notification).count() == 2

    def test_read_notification_allows_new_one(self, db):
        first = notifications.emit(db, notifications.ORDER, {"id": 7})
        first.read = True
        db.commit()

        second = notifications.emit(db, notifications.ORDER, {"id": 7})
        assert second.id != first.id

    def test_payload_without_id_never_deduped(self, db):
        notifications.emit(db, "system", {"note": "hello"})
        notifications.emit(db, "system", {"note": "hello"})
        assert db.query(Notification).count() == 2

    @pytest.mark.parametrize("stock", [5, 6, 100])
    def test_stock_notice_suppressed_at_or_above_threshold(self, db, stock):
        assert notifications.emit_low_stock(db, 1, "Widget", stock) is None
        assert db.query(Notification).count() == 0

    def test_low_stock_notice(self, db):
        n = notifications.emit_low_stock(db, 1, "Widget", 4)
        assert n.type == notifications.STOCK
        assert n.message == "Widget has only 4 left in stock."
        assert n.data["stock"] == 4

    def test_storage_failure_raises(self, db):
        with patch.object(db, "commit", side_effect=RuntimeError("disk full")):
            with pytest.raises(RuntimeError):
                notifications.emit(db, notifications.ORDER, {"id": 1})
