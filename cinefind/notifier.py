import logging

import httpx

from .config import settings
from .database import db
from .models import ContentItem

logger = logging.getLogger(__name__)


class PushNotifier:
    """Send push notifications through Firebase Cloud Messaging (HTTP v1)."""

    def build_message(self, token: str, item: ContentItem) -> dict:
        notification = {"title": "New video added", "body": item.title or "Untitled"}
        if item.thumbnail_url:
            notification["image"] = item.thumbnail_url
        return {
            "message": {
                "token": token,
                "notification": notification,
                "data": {"content_id": item.id, "category": item.category.value},
            }
        }

    async def notify_new_content(self, item: ContentItem) -> int:
        """Tell every registered device about a new catalog entry.

        Returns the number of notifications accepted. Delivery failures are
        logged per token and never raised.
        """
        if not settings.notifications_enabled:
            return 0
        if not settings.push_configured:
            logger.warning("FCM project or access token not set, skipping notifications")
            return 0

        recipients = await db.get_push_recipients()
        if not recipients:
            return 0

        sent = 0
        async with httpx.AsyncClient() as client:
            for user in recipients:
                try:
                    response = await client.post(
                        settings.fcm_send_url,
                        headers={"Authorization": f"Bearer {settings.fcm_access_token}"},
                        json=self.build_message(user.fcm_token, item),
                        timeout=settings.http_timeout_seconds,
                    )
                except httpx.HTTPError as e:
                    logger.warning(f"Failed to notify {user.id}: {e}")
                    continue
                if response.status_code != 200:
                    logger.warning(f"Failed to notify {user.id}: {response.status_code}")
                    continue
                sent += 1

        logger.info(f"Sent {sent}/{len(recipients)} notifications for {item.id}")
        return sent


# Global notifier instance
notifier = PushNotifier()
