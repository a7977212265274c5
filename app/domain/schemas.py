from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel


PRICE_PLACEHOLDER = "{price}"
THRESHOLD_PLACEHOLDER = "{threshold}"


# ============================================
# Shop Settings Schemas
# ============================================

class BarPosition(str, Enum):
    TOP = "top"
    BOTTOM = "bottom"
    FIXED = "fixed"
    ABSOLUTE = "absolute"


class BorderSettings(BaseModel):
    show: bool = False
    width_px: int = Field(default=1, ge=0, le=20)
    color: str = "#000000"
    radius_px: int = Field(default=0, ge=0, le=100)


class ShadowSettings(BaseModel):
    show: bool = False
    color: str = "rgba(0, 0, 0, 0.3)"
    blur_px: int = Field(default=5, ge=0, le=100)
    offset_y_px: int = Field(default=2, ge=-50, le=50)


class ShopSettings(BaseModel):
    """Display and behaviour configuration of the free shipping bar for one shop."""

    enabled: bool = True
    threshold_minor: int = Field(default=20000, ge=0)
    calculate_difference: bool = False
    message_template: str = "Only {price} left for free shipping!"
    loading_message: str = "Checking your cart..."
    success_message: str = "Congratulations! You've got free shipping :)"
    fallback_message: str = "Free shipping on orders over {threshold}"
    show_success_message: bool = True
    decimal_separator: Literal[".", ","] = "."

    # Visuals
    bar_color: str = "#4CAF50"
    text_color: str = "#FFFFFF"
    font_size_px: int = Field(default=16, ge=6, le=72)
    bold_text: bool = False
    bar_height_px: int = Field(default=50, ge=10, le=300)
    bar_position: BarPosition = BarPosition.TOP
    bar_top_offset_px: int = Field(default=0, ge=0, le=1000)
    bar_width_percent: int = Field(default=100, ge=0, le=100)
    transparent_background: bool = False
    border: BorderSettings = Field(default_factory=BorderSettings)
    shadow: ShadowSettings = Field(default_factory=ShadowSettings)

    # Delivery channel
    use_script_tag: bool = True

    @model_validator(mode="after")
    def _template_has_placeholder(self) -> "ShopSettings":
        if self.calculate_difference and PRICE_PLACEHOLDER not in self.message_template:
            raise ValueError(
                f"message_template must contain {PRICE_PLACEHOLDER} when calculate_difference is enabled"
            )
        return self

    @classmethod
    def from_stored(cls, data: dict | None) -> "ShopSettings":
        """Build settings from a stored record, replacing bad fields with defaults.

        Also understands rows written by the legacy Node app, which used
        ``active`` and a ``threshold`` in major currency units.
        """
        if not isinstance(data, dict):
            return cls()

        raw = dict(data)
        if "enabled" not in raw and "active" in raw:
            raw["enabled"] = raw["active"]
        if "threshold_minor" not in raw and raw.get("threshold") is not None:
            try:
                raw["threshold_minor"] = round(float(raw["threshold"]) * 100)
            except (TypeError, ValueError):
                pass

        known = {k: v for k, v in raw.items() if k in cls.model_fields and v is not None}
        while True:
            try:
                return cls.model_validate(known)
            except ValidationError as e:
                bad = {err["loc"][0] for err in e.errors() if err["loc"]}
                if not bad:
                    # Model-level check: only the template can break it
                    bad = {"message_template"}
                if not bad & known.keys():
                    return cls()
                for key in bad:
                    known.pop(key, None)

    def to_script_config(self) -> dict:
        """Settings in the camelCase shape embedded into the storefront script."""
        return _camelize(self.model_dump(mode="json"))


def _camelize(value):
    if isinstance(value, dict):
        return {to_camel(k): _camelize(v) for k, v in value.items()}
    return value


# ============================================
# Session Schemas
# ============================================

class ShopSession(BaseModel):
    """OAuth credential for a shop. Never returned to a browser."""

    id: str
    shop: str
    access_token: str
    scope: str = ""
    state: Optional[str] = None
    is_online: bool = False
    expires_at: Optional[datetime] = None

    @staticmethod
    def offline_id(shop: str) -> str:
        return f"offline_{shop}"

    def is_active(self, scopes: list[str] | None = None, now: datetime | None = None) -> bool:
        if not self.access_token:
            return False
        if self.expires_at is not None:
            current = now or datetime.now(self.expires_at.tzinfo)
            if self.expires_at <= current:
                return False
        if scopes:
            granted = {s.strip() for s in self.scope.split(",") if s.strip()}
            # write_x implies read_x on Shopify
            implied = {s.replace("write_", "read_", 1) for s in granted if s.startswith("write_")}
            return set(scopes) <= granted | implied
        return True


# ============================================
# Banner Schemas
# ============================================

class BannerPreviewResponse(BaseModel):
    subtotal_minor: int
    state: str
    text: Optional[str] = None


# ============================================
# Subscription Schemas
# ============================================

class SubscriptionStatusResponse(BaseModel):
    active: bool
    status: Optional[str] = None
    plan_name: Optional[str] = None


class SubscriptionCreateResponse(BaseModel):
    success: bool = True
    confirmation_url: str


class ScriptTagToggleResponse(BaseModel):
    success: bool = True
    message: str
