"""
Tests for in-app notifications
"""

import pytest

from nova_banking.storage import InMemoryStorage
from nova_banking.notifications import NotificationCenter, NotificationType
from nova_banking.errors import NotFoundError


class TestNotificationType:
    """Test message templates"""

    def test_render_transfer(self):
        message = NotificationType.TRANSFER_COMPLETE.render(amount="$100.00", recipient="Savings")
        assert message == "Your transfer of $100.00 to Savings has been completed."
        assert NotificationType.TRANSFER_COMPLETE.title == "Transfer Complete"

    def test_render_account_approved(self):
        message = NotificationType.ACCOUNT_REQUEST_APPROVED.render(account_type="savings")
        assert message == "Your request for a new savings account has been approved."

    def test_static_rejection_message(self):
        assert NotificationType.DEPOSIT_REJECTED.render() == (
            "Your deposit request has been rejected. Please contact customer support for more information."
        )


class TestNotificationCenter:
    """Test NotificationCenter operations"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.center = NotificationCenter(self.storage)

    def test_notify(self):
        notification = self.center.notify("user_1", NotificationType.DEPOSIT_APPROVED, amount="₹300.00")

        assert notification.user_id == "user_1"
        assert notification.title == "Deposit Approved"
        assert notification.message == "Your deposit request of ₹300.00 has been approved."
        assert not notification.read

    def test_user_notifications_and_unread_count(self):
        self.center.notify("user_1", NotificationType.ACCOUNT_REQUEST_REJECTED)
        self.center.notify("user_1", NotificationType.DEPOSIT_REJECTED)
        self.center.notify("user_2", NotificationType.DEPOSIT_REJECTED)

        assert len(self.center.get_user_notifications("user_1")) == 2
        assert self.center.unread_count("user_1") == 2
        assert self.center.unread_count("user_2") == 1

    def test_mark_as_read(self):
        notification = self.center.notify("user_1", NotificationType.DEPOSIT_REJECTED)

        updated = self.center.mark_as_read(notification.id, "user_1")

        assert updated.read
        assert self.center.unread_count("user_1") == 0
        assert self.center.get_user_notifications("user_1", unread_only=True) == []

    def test_cannot_read_other_users_notification(self):
        notification = self.center.notify("user_1", NotificationType.DEPOSIT_REJECTED)

        with pytest.raises(NotFoundError):
            self.center.mark_as_read(notification.id, "user_2")
        with pytest.raises(NotFoundError):
            self.center.get_notification(notification.id, "user_2")

        assert self.center.unread_count("user_1") == 1

    def test_mark_all_as_read(self):
        for _ in range(3):
            self.center.notify("user_1", NotificationType.DEPOSIT_REJECTED)
        self.center.notify("user_2", NotificationType.DEPOSIT_REJECTED)

        assert self.center.mark_all_as_read("user_1") == 3
        assert self.center.mark_all_as_read("user_1") == 0
        assert self.center.unread_count("user_1") == 0
        assert self.center.unread_count("user_2") == 1
