"""
Notification Engine Module

Informs users about workflow activity: the next approver when a document is
handed to them, the requester when the chain finishes, and the remaining
approvers when a workflow is cancelled. Delivery is best-effort; a failed
channel is recorded on the notification and never reaches the workflow.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import requests

from .config import DocflowConfig, get_config
from .events import DomainEvent, EventDispatcher, EventPayload
from .storage import StorageInterface, StorageRecord, parse_datetime


class NotificationChannel(Enum):
    """Available notification channels"""
    IN_APP = "in_app"
    EMAIL = "email"
    WEBHOOK = "webhook"
    LOG = "log"


class NotificationType(Enum):
    """Workflow notification kinds"""
    WORKFLOW_ASSIGNED = "workflow_assigned"
    WORKFLOW_APPROVED = "workflow_approved"
    WORKFLOW_REJECTED = "workflow_rejected"
    WORKFLOW_CANCELLED = "workflow_cancelled"


class NotificationStatus(Enum):
    """Status of notifications"""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    READ = "read"


@dataclass
class Notification(StorageRecord):
    """Individual notification instance"""
    notification_type: NotificationType
    channel: NotificationChannel
    recipient_id: str
    recipient_address: str  # user id, email address or webhook URL
    workflow_id: str
    title: str
    message: str
    action_url: Optional[str] = None
    status: NotificationStatus = NotificationStatus.PENDING
    sent_at: Optional[datetime] = None
    read_at: Optional[datetime] = None
    failed_reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Notification':
        data = dict(data)
        data['notification_type'] = NotificationType(data['notification_type'])
        data['channel'] = NotificationChannel(data['channel'])
        data['status'] = NotificationStatus(data['status'])
        data['sent_at'] = parse_datetime(data.get('sent_at'))
        data['read_at'] = parse_datetime(data.get('read_at'))
        return super().from_dict(data)


class ChannelProvider(ABC):
    """Abstract base class for notification channel providers"""

    @abstractmethod
    async def send(self, notification: Notification) -> bool:
        """Send notification via this channel. Returns True if successful."""
        pass


class InAppChannelProvider(ChannelProvider):
    """
    In-app inbox. The stored notification record is what the user reads, so
    delivery only has to check there is somebody to deliver to.
    """

    async def send(self, notification: Notification) -> bool:
        return bool(notification.recipient_address)


class LogChannelProvider(ChannelProvider):
    """Writes the notification to the log; stands in for email delivery"""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("docflow.notifications")

    async def send(self, notification: Notification) -> bool:
        self.logger.info(
            f"{notification.channel.value.upper()} to {notification.recipient_address}: "
            f"{notification.title} | {notification.message[:100]}"
        )
        return True


class WebhookChannelProvider(ChannelProvider):
    """Webhook channel provider for external integrations"""

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self.logger = logging.getLogger("docflow.notifications")

    async def send(self, notification: Notification) -> bool:
        """Send notification via webhook POST"""
        payload = {
            "notification_id": notification.id,
            "type": notification.notification_type.value,
            "recipient_id": notification.recipient_id,
            "workflow_id": notification.workflow_id,
            "title": notification.title,
            "message": notification.message,
            "action_url": notification.action_url,
            "timestamp": notification.created_at.isoformat(),
        }
        try:
            response = requests.post(
                notification.recipient_address,
                json=payload,
                timeout=self.timeout,
                headers={"Content-Type": "application/json"}
            )
        except requests.RequestException as e:
            self.logger.error(f"Webhook send failed for notification {notification.id}: {e}")
            return False
        return response.ok


class NotificationEngine:
    """Renders workflow notifications and delivers them over the configured channels"""

    WORKFLOWS_TABLE = "workflows"
    DOCUMENTS_TABLE = "documents"
    USERS_TABLE = "users"

    def __init__(self, storage: StorageInterface, config: Optional[DocflowConfig] = None):
        self.storage = storage
        self.config = config or get_config()
        self.notifications_table = "notifications"
        self.logger = logging.getLogger("docflow.notifications")

        self.providers: Dict[NotificationChannel, ChannelProvider] = {}
        self._initialize_default_providers()

    def _initialize_default_providers(self):
        log_provider = LogChannelProvider(self.logger)
        self.providers[NotificationChannel.IN_APP] = InAppChannelProvider()
        self.providers[NotificationChannel.EMAIL] = log_provider
        self.providers[NotificationChannel.LOG] = log_provider
        self.providers[NotificationChannel.WEBHOOK] = WebhookChannelProvider(self.config.webhook_timeout)

    def register_provider(self, channel: NotificationChannel, provider: ChannelProvider):
        """Register a channel provider"""
        self.providers[channel] = provider

    # Sending

    async def send_workflow_notification(
        self,
        workflow_id: str,
        user_id: str,
        kind: NotificationType
    ) -> List[Notification]:
        """
        Notify one user about a workflow. Missing workflows or users are
        logged and skipped.

        Returns:
            The notification records written, one per channel attempted
        """
        workflow = self.storage.load(self.WORKFLOWS_TABLE, workflow_id)
        if not workflow:
            self.logger.warning(f"Workflow {workflow_id} not found for {kind.value} notification")
            return []
        user = self.storage.load(self.USERS_TABLE, user_id)
        if not user:
            self.logger.warning(f"User {user_id} not found for {kind.value} notification")
            return []

        document = self.storage.load(self.DOCUMENTS_TABLE, workflow['document_id']) or {}
        title, message, action_url = self._render(kind, workflow, document.get('title', 'Untitled'))

        notifications = []
        for channel, address in self._channels_for(user):
            notification = await self._send_via_channel(
                channel, address, kind, user_id, workflow_id, title, message, action_url
            )
            notifications.append(notification)
        return notifications

    async def _send_via_channel(
        self,
        channel: NotificationChannel,
        address: str,
        kind: NotificationType,
        user_id: str,
        workflow_id: str,
        title: str,
        message: str,
        action_url: str
    ) -> Notification:
        now = datetime.now(timezone.utc)
        notification = Notification(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            notification_type=kind,
            channel=channel,
            recipient_id=user_id,
            recipient_address=address,
            workflow_id=workflow_id,
            title=title,
            message=message,
            action_url=action_url
        )

        provider = self.providers.get(channel)
        try:
            success = bool(provider) and await provider.send(notification)
            if success:
                notification.status = NotificationStatus.SENT
                notification.sent_at = now
            else:
                notification.status = NotificationStatus.FAILED
                notification.failed_reason = "Provider send failed" if provider else "No provider registered"
        except Exception as e:
            self.logger.error(f"Sending {kind.value} via {channel.value} to {user_id} failed: {e}")
            notification.status = NotificationStatus.FAILED
            notification.failed_reason = str(e)

        self.storage.save(self.notifications_table, notification.id, notification.to_dict())
        return notification

    def _channels_for(self, user: Dict[str, Any]):
        channels = [(NotificationChannel.IN_APP, user['id'])]
        if user.get('email'):
            channels.append((NotificationChannel.EMAIL, user['email']))
        if self.config.webhook_url:
            channels.append((NotificationChannel.WEBHOOK, self.config.webhook_url))
        return channels

    @staticmethod
    def _render(kind: NotificationType, workflow: Dict[str, Any], document_title: str):
        workflow_url = f"/workflows/{workflow['id']}"
        if kind == NotificationType.WORKFLOW_ASSIGNED:
            return (
                "New document to review",
                f'You have been asked to review "{document_title}". Priority: {workflow["priority"]}',
                workflow_url
            )
        if kind == NotificationType.WORKFLOW_APPROVED:
            return (
                "Document approved",
                f'Your document "{document_title}" has been approved.',
                f"/documents/{workflow['document_id']}"
            )
        if kind == NotificationType.WORKFLOW_REJECTED:
            return (
                "Document rejected",
                f'Your document "{document_title}" has been rejected. Check the comments for details.',
                workflow_url
            )
        return (
            "Workflow cancelled",
            f'The workflow for "{document_title}" has been cancelled.',
            workflow_url
        )

    # Inbox

    def get_notifications(self, recipient_id: str, unread_only: bool = False,
                          limit: int = 50) -> List[Notification]:
        """In-app notifications for a recipient, newest first"""
        filters = {
            "recipient_id": recipient_id,
            "channel": NotificationChannel.IN_APP.value,
        }
        if unread_only:
            filters["status"] = NotificationStatus.SENT.value

        notifications = [Notification.from_dict(data)
                         for data in self.storage.find(self.notifications_table, filters)]
        notifications = [n for n in notifications if n.status != NotificationStatus.FAILED]
        notifications.sort(key=lambda n: n.created_at, reverse=True)
        return notifications[:limit]

    def mark_as_read(self, notification_id: str) -> bool:
        """Mark notification as read"""
        now = datetime.now(timezone.utc).isoformat()
        updated = self.storage.compare_and_swap(
            self.notifications_table, notification_id,
            {"status": NotificationStatus.SENT.value},
            {"status": NotificationStatus.READ.value, "read_at": now, "updated_at": now}
        )
        if updated is not None:
            return True
        return self.storage.exists(self.notifications_table, notification_id)

    def get_unread_count(self, recipient_id: str) -> int:
        """Get count of unread notifications for recipient"""
        return len(self.storage.find(self.notifications_table, {
            "recipient_id": recipient_id,
            "channel": NotificationChannel.IN_APP.value,
            "status": NotificationStatus.SENT.value
        }))


EVENT_NOTIFICATIONS = {
    DomainEvent.WORKFLOW_CREATED: NotificationType.WORKFLOW_ASSIGNED,
    DomainEvent.WORKFLOW_STEP_APPROVED: NotificationType.WORKFLOW_ASSIGNED,
    DomainEvent.WORKFLOW_APPROVED: NotificationType.WORKFLOW_APPROVED,
    DomainEvent.WORKFLOW_REJECTED: NotificationType.WORKFLOW_REJECTED,
    DomainEvent.WORKFLOW_CANCELLED: NotificationType.WORKFLOW_CANCELLED,
}


class WorkflowNotifier:
    """Turns workflow domain events into notifications for the recipients they name"""

    def __init__(self, engine: NotificationEngine, dispatcher: EventDispatcher):
        self.engine = engine
        self.logger = logging.getLogger("docflow.notifications")
        self._pending = set()
        for event_type in EVENT_NOTIFICATIONS:
            dispatcher.subscribe(event_type, self.handle_event)

    def handle_event(self, event: EventPayload) -> None:
        kind = EVENT_NOTIFICATIONS[event.event_type]
        for recipient_id in event.data.get('recipients', []):
            try:
                self._dispatch(self.engine.send_workflow_notification(event.entity_id, recipient_id, kind))
            except Exception as e:
                self.logger.error(
                    f"Notification to {recipient_id} for workflow {event.entity_id} failed: {e}"
                )

    def _dispatch(self, coro) -> None:
        """Run now when called from sync code; schedule when an event loop is running"""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(coro)
            return

        task = loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.logger.error(f"Notification delivery failed: {task.exception()}")
