"""
Platform integration settings edited from the admin panel
Stored as a single document; secrets are only ever returned masked
"""

from datetime import datetime
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel, Field, validator

SETTINGS_KEY = "integrations"
SECRET_FIELDS = {
    "zoom": {"client_secret", "webhook_secret"},
    "ai": {"gemini_api_key"},
    "payments": {"key_secret", "webhook_secret"},
    "uploads": {"api_secret"},
}


class ZoomSettings(BaseModel):
    account_id: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    webhook_secret: Optional[str] = None


class AISettings(BaseModel):
    gemini_api_key: Optional[str] = None
    model: Optional[str] = None
    pre_grading_enabled: Optional[bool] = None


class PaymentSettings(BaseModel):
    key_id: Optional[str] = None
    key_secret: Optional[str] = None
    webhook_secret: Optional[str] = None


class UploadSettings(BaseModel):
    cloud_name: Optional[str] = None
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    max_file_size_mb: Optional[int] = Field(None, gt=0, le=100)
    allowed_types: Optional[List[str]] = None

    @validator("allowed_types")
    def normalize_types(cls, v):
        if v is None:
            return v
        return sorted({t.strip().lower() for t in v if t.strip()})


class SettingsUpdate(BaseModel):
    zoom: Optional[ZoomSettings] = None
    ai: Optional[AISettings] = None
    payments: Optional[PaymentSettings] = None
    uploads: Optional[UploadSettings] = None


def mask(value: Optional[str]) -> Optional[str]:
    """'sk_live_abcdef1234' -> '**************1234'"""
    if not value:
        return value
    if len(value) <= 4:
        return "*" * len(value)
    return "*" * (len(value) - 4) + value[-4:]


def mask_settings(doc: dict) -> dict:
    masked = {}
    for section, secrets in SECRET_FIELDS.items():
        values = dict(doc.get(section) or {})
        for field in secrets:
            if field in values:
                values[field] = mask(values[field])
        masked[section] = values
    masked["updated_at"] = doc.get("updated_at")
    masked["updated_by"] = doc.get("updated_by")
    return masked


async def get_integration_settings(db: AsyncIOMotorDatabase) -> dict:
    doc = await db.platform_settings.find_one({"key": SETTINGS_KEY}, {"_id": 0})
    return doc or {}


async def update_integration_settings(db: AsyncIOMotorDatabase, data: SettingsUpdate, admin_id: str) -> dict:
    """
    Merge section fields into the stored document
    Masked values sent back unchanged are ignored so secrets survive a round trip
    """
    updates = {}
    for section, values in data.dict(exclude_unset=True).items():
        if values is None:
            continue
        for field, value in values.items():
            if value is None:
                continue
            if field in SECRET_FIELDS[section] and isinstance(value, str) and value.startswith("****"):
                continue
            updates[f"{section}.{field}"] = value

    updates["updated_at"] = datetime.utcnow()
    updates["updated_by"] = admin_id
    await db.platform_settings.update_one(
        {"key": SETTINGS_KEY},
        {"$set": updates},
        upsert=True
    )
    return await get_integration_settings(db)
