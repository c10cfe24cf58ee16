"""
Tests for the notification queue and its email transport.
"""

from unittest.mock import AsyncMock

import httpx
import pytest
import respx
from sqlalchemy import select

from esg_ledger.config import Settings, settings
from esg_ledger.models.notification import NotificationQueueItem, NotificationStatus, NotificationType
from esg_ledger.services.email_service import EmailProvider, EmailService
from esg_ledger.services.notification_service import NotificationQueueService
from esg_ledger.utils.error_handling import TransportException


async def _enqueue_many(service: NotificationQueueService, count: int, prefix: str = "user"):
    return [
        await service.enqueue(
            recipient=f"{prefix}{i}@esg.test",
            subject=f"Message {i}",
            body="body",
            notification_type=NotificationType.APPROVAL_REQUEST,
            related_id=f"WF_{i}",
        )
        for i in range(count)
    ]


async def _reload(db_session, item_id: int) -> NotificationQueueItem:
    result = await db_session.execute(
        select(NotificationQueueItem)
        .where(NotificationQueueItem.id == item_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


class TestEnqueue:

    @pytest.mark.asyncio
    async def test_enqueue_creates_pending_item(self, notification_service, db_session):
        item = await notification_service.enqueue(
            "ops@esg.test", "Hello", "Body", NotificationType.AUDIT_ALERT, related_id="X1"
        )
        await db_session.commit()

        stored = await _reload(db_session, item.id)
        assert stored.status == NotificationStatus.PENDING
        assert stored.attempts == 0
        assert stored.sent_at is None
        assert stored.created_at is not None
        assert stored.related_id == "X1"

    @pytest.mark.asyncio
    async def test_approval_request_message(self, notification_service):
        item = await notification_service.send_approval_notification("WF_1_abc", "bu@esg.test", "energy", "alice")

        assert item.notification_type == NotificationType.APPROVAL_REQUEST
        assert item.subject == "ESG Approval Required: energy"
        assert "Submitted by: alice" in item.body
        assert f"{settings.app_url}/approvals/WF_1_abc" in item.body

    @pytest.mark.asyncio
    async def test_status_message_without_comments(self, notification_service):
        item = await notification_service.send_approval_status_notification("WF_1_abc", "alice@x.com", "approved")

        assert item.subject == "ESG Approval APPROVED: Workflow WF_1_abc"
        assert "No comments provided" in item.body
        assert f"{settings.app_url}/workflows/WF_1_abc" in item.body

    @pytest.mark.asyncio
    async def test_audit_alert_per_recipient(self, notification_service):
        items = await notification_service.send_audit_alert_notification(
            ["a@esg.test", "b@esg.test"], "chain_broken", {"invalid_entries": "3, 4"}
        )

        assert [i.recipient for i in items] == ["a@esg.test", "b@esg.test"]
        assert all(i.notification_type == NotificationType.AUDIT_ALERT for i in items)
        assert items[0].subject == "ESG Audit Alert: chain_broken"
        assert "invalid_entries: 3, 4" in items[0].body


class TestProcessQueue:

    @pytest.mark.asyncio
    async def test_successful_delivery(self, notification_service, transport, db_session):
        [item] = await _enqueue_many(notification_service, 1)

        results = await notification_service.process_queue()

        assert [(r.id, r.status, r.error) for r in results] == [(item.id, "sent", None)]
        transport.send.assert_awaited_once_with("user0@esg.test", "Message 0", "body")
        stored = await _reload(db_session, item.id)
        assert stored.status == NotificationStatus.SENT
        assert stored.sent_at is not None

    @pytest.mark.asyncio
    async def test_sent_items_are_not_redelivered(self, notification_service, transport):
        await _enqueue_many(notification_service, 1)
        await notification_service.process_queue()

        assert await notification_service.process_queue() == []
        assert transport.send.await_count == 1

    @pytest.mark.asyncio
    async def test_retry_exhaustion(self, db_session, failing_transport):
        service = NotificationQueueService(db_session, failing_transport)
        [item] = await _enqueue_many(service, 1)

        first = await service.process_queue()
        assert first[0].status == "failed"
        assert "connection refused" in first[0].error
        stored = await _reload(db_session, item.id)
        assert stored.status == NotificationStatus.PENDING
        assert stored.attempts == 1

        await service.process_queue()
        third = await service.process_queue()
        assert third[0].status == "failed"

        stored = await _reload(db_session, item.id)
        assert stored.status == NotificationStatus.FAILED
        assert stored.attempts == settings.notification_max_attempts == 3
        assert "connection refused" in stored.last_error

        assert await service.process_queue() == []
        assert failing_transport.send.await_count == 3

    @pytest.mark.asyncio
    async def test_oldest_first_in_batches(self, notification_service, transport):
        items = await _enqueue_many(notification_service, 12)

        first = await notification_service.process_queue()
        assert [r.id for r in first] == [i.id for i in items[:10]]

        second = await notification_service.process_queue()
        assert [r.id for r in second] == [i.id for i in items[10:]]

    @pytest.mark.asyncio
    async def test_batch_size_setting(self, notification_service, monkeypatch):
        monkeypatch.setattr(settings, "notification_batch_size", 3)
        await _enqueue_many(notification_service, 5)

        assert len(await notification_service.process_queue()) == 3

    @pytest.mark.asyncio
    async def test_one_failure_does_not_abort_batch(self, db_session):
        async def send(recipient, subject, body):
            if recipient == "user1@esg.test":
                raise TransportException("smtp", "mailbox unavailable")

        transport = AsyncMock()
        transport.send = AsyncMock(side_effect=send)
        service = NotificationQueueService(db_session, transport)
        await _enqueue_many(service, 3)

        results = await service.process_queue()

        assert [r.status for r in results] == ["sent", "failed", "sent"]
        assert results[1].error.endswith("mailbox unavailable")

    @pytest.mark.asyncio
    async def test_unexpected_transport_error_is_contained(self, db_session):
        async def send(recipient, subject, body):
            if recipient == "user1@esg.test":
                raise RuntimeError("template rendering blew up")

        transport = AsyncMock()
        transport.send = AsyncMock(side_effect=send)
        service = NotificationQueueService(db_session, transport)
        items = await _enqueue_many(service, 3)

        results = await service.process_queue()

        assert transport.send.await_count == 3
        assert [r.status for r in results] == ["sent", "failed", "sent"]
        assert results[1].error == "RuntimeError: template rendering blew up"

        assert (await _reload(db_session, items[0].id)).status == NotificationStatus.SENT
        assert (await _reload(db_session, items[2].id)).status == NotificationStatus.SENT
        failed = await _reload(db_session, items[1].id)
        assert failed.status == NotificationStatus.PENDING
        assert failed.attempts == 1
        assert "RuntimeError" in failed.last_error

    @pytest.mark.asyncio
    async def test_unexpected_transport_error_exhausts_retries(self, db_session):
        transport = AsyncMock()
        transport.send = AsyncMock(side_effect=RuntimeError("boom"))
        service = NotificationQueueService(db_session, transport)
        [item] = await _enqueue_many(service, 1)

        for _ in range(settings.notification_max_attempts):
            await service.process_queue()

        stored = await _reload(db_session, item.id)
        assert stored.status == NotificationStatus.FAILED
        assert stored.attempts == settings.notification_max_attempts
        assert await service.process_queue() == []

    @pytest.mark.asyncio
    async def test_queue_stats(self, db_session, failing_transport, monkeypatch):
        monkeypatch.setattr(settings, "notification_max_attempts", 1)
        service = NotificationQueueService(db_session, failing_transport)
        await _enqueue_many(service, 2)
        await service.process_queue()
        await _enqueue_many(service, 1, prefix="later")
        await db_session.commit()

        assert await service.get_queue_stats() == {"pending": 1, "sent": 0, "failed": 2}

    @pytest.mark.asyncio
    async def test_default_transport_is_email(self, db_session):
        assert isinstance(NotificationQueueService(db_session).transport, EmailService)


class TestEmailService:
    """Email transport providers."""

    def _service(self, **overrides) -> EmailService:
        return EmailService(Settings(_env_file=None, mail_from="esg@esg.test", **overrides))

    def test_provider_selection(self):
        assert self._service().provider == EmailProvider.MOCK
        assert self._service(mail_server="smtp.esg.test").provider == EmailProvider.SMTP
        assert self._service(mailgun_api_key="k", mailgun_domain="mg.esg.test").provider == EmailProvider.MAILGUN
        assert self._service(sendgrid_api_key="k", mail_server="smtp.esg.test").provider == EmailProvider.SENDGRID

    @pytest.mark.asyncio
    async def test_mock_provider_succeeds(self):
        await self._service().send("alice@x.com", "Subject", "Body")

    @pytest.mark.asyncio
    @respx.mock
    async def test_sendgrid_success(self):
        route = respx.post("https://api.sendgrid.com/v3/mail/send").mock(return_value=httpx.Response(202))

        await self._service(sendgrid_api_key="sg-key").send("alice@x.com", "Subject", "Body")

        assert route.called
        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer sg-key"

    @pytest.mark.asyncio
    @respx.mock
    async def test_sendgrid_rejection_raises(self):
        respx.post("https://api.sendgrid.com/v3/mail/send").mock(
            return_value=httpx.Response(401, text="unauthorized")
        )

        with pytest.raises(TransportException) as exc_info:
            await self._service(sendgrid_api_key="bad").send("alice@x.com", "Subject", "Body")
        assert "401" in exc_info.value.message

    @pytest.mark.asyncio
    @respx.mock
    async def test_mailgun_unreachable_raises(self):
        respx.post("https://api.mailgun.net/v3/mg.esg.test/messages").mock(
            side_effect=httpx.ConnectError("connection refused")
        )

        service = self._service(mailgun_api_key="k", mailgun_domain="mg.esg.test")
        with pytest.raises(TransportException):
            await service.send("alice@x.com", "Subject", "Body")

    @pytest.mark.asyncio
    async def test_malformed_provider_url_raises_transport_error(self):
        service = self._service(mailgun_api_key="k", mailgun_domain="mg\x00esg.test")

        with pytest.raises(TransportException) as exc_info:
            await service.send("alice@x.com", "Subject", "Body")
        assert exc_info.value.details["service"] == EmailProvider.MAILGUN
