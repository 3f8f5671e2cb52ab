"""
Zoom API client (Server-to-Server OAuth)
Creates, updates and deletes scheduled meetings for live classes
"""

import logging
import secrets
import string
import time
from datetime import datetime
from typing import Optional

import httpx
from fastapi import Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from codebridge.admin.settings import get_integration_settings
from codebridge.core.config import settings
from codebridge.core.database import get_db
from codebridge.core.errors import ZoomError

logger = logging.getLogger(__name__)

ZOOM_API_URL = "https://api.zoom.us/v2"
ZOOM_OAUTH_URL = "https://zoom.us/oauth/token"
PASSWORD_CHARS = string.digits + string.ascii_letters
TOKEN_REFRESH_MARGIN_SECONDS = 300


def generate_password(length: int = 10) -> str:
    return "".join(secrets.choice(PASSWORD_CHARS) for _ in range(length))


def to_zoom_time(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


class ZoomClient:
    def __init__(
        self,
        account_id: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        timeout: float = 15.0
    ):
        self.account_id = account_id or settings.ZOOM_ACCOUNT_ID
        self.client_id = client_id or settings.ZOOM_CLIENT_ID
        self.client_secret = client_secret or settings.ZOOM_CLIENT_SECRET
        self.timeout = timeout
        self._access_token: Optional[str] = None
        self._token_expiry: float = 0

    @property
    def configured(self) -> bool:
        return bool(self.account_id and self.client_id and self.client_secret)

    async def get_access_token(self) -> str:
        """OAuth token, cached until shortly before it expires"""
        if self._access_token and time.time() < self._token_expiry:
            return self._access_token
        if not self.configured:
            raise ZoomError("Zoom integration is not configured")

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    ZOOM_OAUTH_URL,
                    params={"grant_type": "account_credentials", "account_id": self.account_id},
                    auth=(self.client_id, self.client_secret),
                    timeout=self.timeout
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            logger.error("Zoom OAuth error: %s", e)
            raise ZoomError("Failed to get Zoom access token")

        self._access_token = data["access_token"]
        self._token_expiry = time.time() + data.get("expires_in", 3600) - TOKEN_REFRESH_MARGIN_SECONDS
        return self._access_token

    async def _request(self, method: str, path: str, error_message: str, **kwargs) -> Optional[dict]:
        token = await self.get_access_token()
        try:
            async with httpx.AsyncClient(base_url=ZOOM_API_URL) as client:
                response = await client.request(
                    method,
                    path,
                    headers={"Authorization": f"Bearer {token}"},
                    timeout=self.timeout,
                    **kwargs
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("%s: %s", error_message, e)
            raise ZoomError(error_message)

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def create_meeting(
        self,
        topic: str,
        start_time: datetime,
        duration: int = 60,
        agenda: str = "",
        password: Optional[str] = None,
        auto_recording: str = "none"
    ) -> dict:
        meeting = await self._request(
            "POST",
            "/users/me/meetings",
            "Failed to create Zoom meeting",
            json={
                "topic": topic or "Class Session",
                "type": 2,  # scheduled
                "start_time": to_zoom_time(start_time),
                "duration": duration,
                "timezone": "UTC",
                "agenda": agenda or "",
                "password": password or generate_password(),
                "settings": {
                    "host_video": True,
                    "participant_video": True,
                    "join_before_host": False,
                    "mute_upon_entry": True,
                    "waiting_room": True,
                    "audio": "both",
                    "auto_recording": auto_recording,
                    "allow_multiple_devices": True
                }
            }
        )
        return {
            "meeting_id": str(meeting["id"]),
            "topic": meeting.get("topic"),
            "join_url": meeting.get("join_url"),
            "start_url": meeting.get("start_url"),
            "password": meeting.get("password"),
            "start_time": meeting.get("start_time"),
            "duration": meeting.get("duration"),
            "timezone": meeting.get("timezone")
        }

    async def get_meeting(self, meeting_id: str) -> dict:
        return await self._request("GET", f"/meetings/{meeting_id}", "Failed to get Zoom meeting details")

    async def update_meeting(self, meeting_id: str, updates: dict) -> Optional[dict]:
        updates = dict(updates)
        if isinstance(updates.get("start_time"), datetime):
            updates["start_time"] = to_zoom_time(updates["start_time"])
        return await self._request("PATCH", f"/meetings/{meeting_id}", "Failed to update Zoom meeting", json=updates)

    async def delete_meeting(self, meeting_id: str):
        await self._request("DELETE", f"/meetings/{meeting_id}", "Failed to delete Zoom meeting")


zoom_client = ZoomClient()


async def get_zoom_client(db: AsyncIOMotorDatabase = Depends(get_db)) -> ZoomClient:
    """FastAPI dependency for the Zoom client; admin-saved credentials override the environment"""
    overrides = (await get_integration_settings(db)).get("zoom", {})
    if not overrides.get("client_id"):
        return zoom_client
    return ZoomClient(
        account_id=overrides.get("account_id"),
        client_id=overrides.get("client_id"),
        client_secret=overrides.get("client_secret")
    )
