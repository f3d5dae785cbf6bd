from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    JSON,
    func,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from .db import Base


def _json_type():
    """JSON type compatible with Postgres and SQLite."""
    return JSON().with_variant(JSONB, "postgresql")


class ShopInstallation(Base):
    """Offline Admin API token obtained through the OAuth install flow."""

    __tablename__ = "shop_installations"

    shop = Column(String(255), primary_key=True)
    access_token = Column(String(255), nullable=False)
    scopes = Column(Text, nullable=True)
    installed_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AppSettings(Base):
    """
    Per-shop merchant configuration.

    Threshold columns are nullable: a null means "use the default from config".
    """

    __tablename__ = "app_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    shop = Column(String(255), unique=True, nullable=False, index=True)

    otp_enabled = Column(Boolean, nullable=False, default=False)
    otp_validity_minutes = Column(Integer, nullable=True)
    otp_resend_seconds = Column(Integer, nullable=True)

    order_spam_protection_enabled = Column(Boolean, nullable=False, default=False)
    order_spam_window_minutes = Column(Integer, nullable=True)
    auto_ip_blocking_enabled = Column(Boolean, nullable=False, default=False)
    ip_attempt_window_minutes = Column(Integer, nullable=True)
    ip_attempt_limit = Column(Integer, nullable=True)

    twilio_account_sid = Column(String(64), nullable=True)
    twilio_auth_token = Column(String(128), nullable=True)
    twilio_verify_service_sid = Column(String(64), nullable=True)

    google_sheet_url = Column(Text, nullable=True)

    form_title = Column(String(255), nullable=True)
    form_subtitle = Column(String(255), nullable=True)
    button_text = Column(String(128), nullable=True)
    form_bg_color = Column(String(16), nullable=True)
    form_text_color = Column(String(16), nullable=True)
    form_label_color = Column(String(16), nullable=True)
    button_color = Column(String(16), nullable=True)
    button_text_color = Column(String(16), nullable=True)

    facebook_pixel_id = Column(String(64), nullable=True)
    tiktok_pixel_id = Column(String(64), nullable=True)
    snapchat_pixel_id = Column(String(64), nullable=True)
    google_analytics_id = Column(String(64), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class ShippingRate(Base):
    __tablename__ = "shipping_rates"
    __table_args__ = (
        # city == "" is the country-wide default row
        UniqueConstraint("shop", "country", "city", name="uq_shipping_rates_shop_country_city"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    shop = Column(String(255), nullable=False, index=True)
    country = Column(String(128), nullable=False)
    city = Column(String(128), nullable=False, default="")
    rate = Column(Float, nullable=False)
    currency = Column(String(8), nullable=False, default="PKR")


class QuantityOffer(Base):
    __tablename__ = "quantity_offers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    shop = Column(String(255), nullable=False, index=True)
    product_id = Column(String(64), nullable=False, index=True)
    min_quantity = Column(Integer, nullable=False)
    discount_type = Column(String(16), nullable=False, default="percentage")  # percentage | fixed
    discount_value = Column(Float, nullable=False)
    title = Column(String(255), nullable=True)


class BlockedIp(Base):
    __tablename__ = "blocked_ips"
    __table_args__ = (
        UniqueConstraint("shop", "ip_address", name="uq_blocked_ips_shop_ip"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    shop = Column(String(255), nullable=False, index=True)
    ip_address = Column(String(64), nullable=False)
    reason = Column(String(32), nullable=False, default="manual")  # manual | auto
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)


class IpOrderLog(Base):
    __tablename__ = "ip_order_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    shop = Column(String(255), nullable=False, index=True)
    ip_address = Column(String(64), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)


class OrderLog(Base):
    __tablename__ = "order_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    shop = Column(String(255), nullable=False, index=True)
    phone = Column(String(32), nullable=False, index=True)
    order_id = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)


class OtpLog(Base):
    __tablename__ = "otp_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    shop = Column(String(255), nullable=False, index=True)
    phone = Column(String(32), nullable=False, index=True)
    status = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)


class FormField(Base):
    __tablename__ = "form_fields"
    __table_args__ = (
        UniqueConstraint("shop", "name", name="uq_form_fields_shop_name"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    shop = Column(String(255), nullable=False, index=True)
    field_type = Column(String(16), nullable=False, default="text")  # text | email | tel | select
    name = Column(String(64), nullable=False)
    label = Column(String(255), nullable=False)
    placeholder = Column(String(255), nullable=True)
    options = Column(_json_type(), nullable=True)
    is_required = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=False, default=0)
