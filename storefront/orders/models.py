# module storefront.orders.models
"""Modèles de requête (pydantic) des flux commande/checkout.

Les clients envoient les mêmes champs sous plusieurs noms (order_id/orderId,
product_id/productId...). Ces modèles normalisent le corps JSON avant toute
logique métier; les services ne manipulent que les attributs typés.
"""
from decimal import Decimal
from typing import Any, List, Optional
import re

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

ADDON_FIELD_MAX = 100
ADDON_VALUE_MAX = 2000
ADDONS_MAX = 50
EMAIL_MAX = 100

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def normalize_email(value: Any) -> str:
    """Email tronqué à 100 caractères; "" si absent ou invalide."""
    if not value:
        return ""
    trimmed = str(value).strip()[:EMAIL_MAX]
    return trimmed if _EMAIL_RE.match(trimmed) else ""


def _to_id(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return str(int(value))
    if isinstance(value, str):
        return value.strip()
    return value


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class AddonSelection(_Request):
    field: str = ""
    value: str = ""

    @field_validator("field", mode="before")
    @classmethod
    def _truncate_field(cls, v: Any) -> str:
        return str(v if v is not None else "").strip()[:ADDON_FIELD_MAX]

    @field_validator("value", mode="before")
    @classmethod
    def _truncate_value(cls, v: Any) -> str:
        return str(v if v is not None else "").strip()[:ADDON_VALUE_MAX]


def _limit_addons(v: Any) -> List[Any]:
    if not isinstance(v, list):
        return []
    return [a for a in v[:ADDONS_MAX] if isinstance(a, dict)]


class CheckoutRequest(_Request):
    """Demande de checkout (Whop ou PayPal). `amount` n'est lu que pour un pourboire."""
    product_id: str = Field(validation_alias=AliasChoices("product_id", "productId"), min_length=1)
    email: str = ""
    addons: List[AddonSelection] = Field(default_factory=list)
    coupon_code: Optional[str] = Field(default=None, validation_alias=AliasChoices("coupon_code", "couponCode", "coupon"))
    type: Optional[str] = None
    order_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("order_id", "orderId"))
    amount: Optional[Decimal] = None

    @model_validator(mode="before")
    @classmethod
    def _lift_metadata(cls, data: Any) -> Any:
        # Anciennes versions du front: addons/type/orderId sous "metadata"
        if isinstance(data, dict) and isinstance(data.get("metadata"), dict):
            meta = data["metadata"]
            data = dict(data)
            for key in ("addons", "type", "orderId", "order_id", "email", "coupon_code", "couponCode"):
                if key in meta and data.get(key) in (None, "", []):
                    data[key] = meta[key]
        return data

    @field_validator("product_id", mode="before")
    @classmethod
    def _coerce_product_id(cls, v: Any) -> Any:
        return _to_id(v)

    @field_validator("order_id", mode="before")
    @classmethod
    def _coerce_order_id(cls, v: Any) -> Any:
        return _to_id(v) or None

    @field_validator("email", mode="before")
    @classmethod
    def _clean_email(cls, v: Any) -> str:
        return normalize_email(v)

    @field_validator("addons", mode="before")
    @classmethod
    def _clean_addons(cls, v: Any) -> List[Any]:
        return _limit_addons(v)

    @field_validator("amount", mode="before")
    @classmethod
    def _lenient_amount(cls, v: Any) -> Any:
        if v in (None, ""):
            return None
        try:
            return Decimal(str(v))
        except ArithmeticError:
            return None

    @property
    def is_tip(self) -> bool:
        return (self.type or "").strip().lower() == "tip"

    def addons_as_dicts(self) -> List[dict]:
        return [a.model_dump() for a in self.addons]


class CaptureRequest(_Request):
    order_id: str = Field(validation_alias=AliasChoices("order_id", "orderId", "orderID"), min_length=1)


class TipRequest(_Request):
    order_id: str = Field(validation_alias=AliasChoices("order_id", "orderId"), min_length=1)
    amount: Decimal = Decimal("0")

    @field_validator("amount", mode="before")
    @classmethod
    def _lenient_amount(cls, v: Any) -> Any:
        try:
            return Decimal(str(v)) if v not in (None, "") else Decimal("0")
        except ArithmeticError:
            return Decimal("0")


class ManualOrderRequest(_Request):
    product_id: str = Field(validation_alias=AliasChoices("product_id", "productId"), min_length=1)
    email: str
    amount: Decimal = Decimal("0")
    addons: List[AddonSelection] = Field(default_factory=list)
    notes: Optional[str] = None
    status: str = "paid"
    delivery_time_minutes: int = Field(default=60, validation_alias=AliasChoices("delivery_time_minutes", "deliveryTime"))

    @field_validator("product_id", mode="before")
    @classmethod
    def _coerce_product_id(cls, v: Any) -> Any:
        return _to_id(v)

    @field_validator("addons", mode="before")
    @classmethod
    def _clean_addons(cls, v: Any) -> List[Any]:
        return _limit_addons(v)

    @field_validator("email", mode="before")
    @classmethod
    def _valid_email(cls, v: Any) -> str:
        email = normalize_email(v)
        if not email:
            raise ValueError("Invalid email format")
        return email

    @field_validator("delivery_time_minutes", mode="before")
    @classmethod
    def _positive_minutes(cls, v: Any) -> int:
        try:
            minutes = int(v)
        except (TypeError, ValueError):
            return 60
        return minutes if minutes > 0 else 60


class DeliverRequest(_Request):
    order_id: str = Field(validation_alias=AliasChoices("order_id", "orderId"), min_length=1)
    video_url: str = Field(validation_alias=AliasChoices("video_url", "videoUrl"), min_length=1)
    thumbnail_url: Optional[str] = Field(default=None, validation_alias=AliasChoices("thumbnail_url", "thumbnailUrl"))
    embed_url: Optional[str] = Field(default=None, validation_alias=AliasChoices("embed_url", "embedUrl"))
    subtitles_url: Optional[str] = Field(default=None, validation_alias=AliasChoices("subtitles_url", "subtitlesUrl"))


class RevisionRequest(_Request):
    order_id: str = Field(validation_alias=AliasChoices("order_id", "orderId"), min_length=1)
    reason: str = "No reason provided"


class ArchiveLinkRequest(_Request):
    order_id: str = Field(validation_alias=AliasChoices("order_id", "orderId"), min_length=1)
    archive_url: str = Field(validation_alias=AliasChoices("archive_url", "archiveUrl"), min_length=1)
