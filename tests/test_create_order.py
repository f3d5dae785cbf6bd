from datetime import timedelta

import httpx
import pytest

from backend.codform import config, shopify_admin, twilio_verify, webhook
from backend.codform.errors import UpstreamValidationError
from backend.codform.models import BlockedIp, IpOrderLog, OrderLog, OtpLog, QuantityOffer, ShippingRate

from .utils import SHOP, add_rows, count_rows, patch_async_client, proxy_params, save_settings, utc_now

IP = "203.0.113.9"
PHONE = "03001234567"
PHONE_E164 = "+923001234567"


def order_body(**overrides):
    body = {
        "cartItems": [
            {"variant_id": 4001, "product_id": 111, "quantity": 5, "price": 100, "title": "Kurta"},
        ],
        "customer": {
            "name": "Ayesha Khan",
            "phone": PHONE,
            "address": "12 Mall Road",
            "city": "Lahore",
            "province": "Punjab",
            "country": "Pakistan",
        },
    }
    body.update(overrides)
    return body


class FakeShopify:
    def __init__(self, order=None, create_errors=None, complete_errors=None):
        self.order = order if order is not None else {"id": "gid://shopify/Order/9", "legacyResourceId": "9001"}
        self.create_errors = create_errors
        self.complete_errors = complete_errors
        self.created = []
        self.completed = []

    async def create(self, shop, token, draft_input):
        self.created.append((shop, token, draft_input))
        if self.create_errors:
            raise UpstreamValidationError(self.create_errors)
        return "gid://shopify/DraftOrder/77"

    async def complete(self, shop, token, draft_id):
        self.completed.append(draft_id)
        if self.complete_errors:
            raise UpstreamValidationError(self.complete_errors)
        return self.order or None


@pytest.fixture
def shopify(monkeypatch, installed_shop):
    fake = FakeShopify()
    monkeypatch.setattr(shopify_admin, "create_draft_order", fake.create)
    monkeypatch.setattr(shopify_admin, "complete_draft_order", fake.complete)
    return fake


@pytest.fixture
def otp_checks(monkeypatch):
    calls = []
    result = {"approved": True, "error": None}

    async def fake_check(creds, phone, code):
        calls.append((phone, code))
        if result["error"]:
            raise result["error"]
        return result["approved"]

    monkeypatch.setattr(twilio_verify, "check_verification", fake_check)
    return calls, result


@pytest.fixture
def sheet_posts(monkeypatch):
    posts = []

    async def fake_post(url, payload):
        posts.append((url, payload))
        return True

    monkeypatch.setattr(webhook, "post_order_summary", fake_post)
    return posts


def post_order(client, body, ip=IP):
    return client.post("/api/proxy/create-order", params=proxy_params(), json=body, headers={"x-forwarded-for": ip})


def test_creates_and_completes_draft_order(client, shopify):
    add_rows(
        ShippingRate(shop=SHOP, country="Pakistan", city="Lahore", rate=150, currency="PKR"),
        ShippingRate(shop=SHOP, country="Pakistan", city="", rate=250, currency="PKR"),
        QuantityOffer(shop=SHOP, product_id="111", min_quantity=3, discount_type="percentage", discount_value=10),
        QuantityOffer(shop=SHOP, product_id="111", min_quantity=5, discount_type="percentage", discount_value=20),
    )
    r = post_order(client, order_body())
    assert r.status_code == 200, r.text
    assert r.json() == {"success": True, "orderId": "9001", "total": 550.0}

    shop, token, draft = shopify.created[0]
    assert (shop, token) == (SHOP, "shpat_test")
    assert draft["lineItems"] == [{"variantId": "gid://shopify/ProductVariant/4001", "quantity": 5}]
    assert draft["tags"] == ["COD", "App Order"]
    assert draft["customAttributes"] == [{"key": "Payment Method", "value": "Cash on Delivery"}]
    assert draft["shippingLine"]["priceWithCurrency"] == {"amount": "150.00", "currencyCode": "PKR"}
    assert draft["appliedDiscount"]["value"] == 100.0
    assert draft["appliedDiscount"]["valueType"] == "FIXED_AMOUNT"
    assert draft["shippingAddress"]["firstName"] == "Ayesha"
    assert draft["shippingAddress"]["lastName"] == "Khan"
    assert draft["shippingAddress"]["phone"] == PHONE_E164
    assert draft["email"] == "923001234567@example.com"
    assert shopify.completed == ["gid://shopify/DraftOrder/77"]


def test_no_discount_line_without_qualifying_offer(client, shopify):
    add_rows(QuantityOffer(shop=SHOP, product_id="111", min_quantity=10, discount_type="fixed", discount_value=50))
    r = post_order(client, order_body())
    assert r.status_code == 200
    draft = shopify.created[0][2]
    assert "appliedDiscount" not in draft
    # unknown city and no rates → hardcoded fallback
    assert draft["shippingLine"]["priceWithCurrency"]["amount"] == "250.00"


@pytest.mark.parametrize(
    "body",
    [
        {},
        order_body(cartItems=[]),
        order_body(customer=None),
        order_body(customer={"name": "A", "phone": PHONE, "address": "", "city": "Lahore"}),
        order_body(customer={"name": "A", "phone": "call me", "address": "12 Mall Road", "city": "Lahore"}),
        order_body(cartItems=[{"variant_id": 1, "quantity": 0}]),
    ],
)
def test_missing_fields_rejected_without_side_effects(client, shopify, body):
    save_settings(auto_ip_blocking_enabled=True, order_spam_protection_enabled=True)
    r = post_order(client, body)
    assert r.status_code == 400
    assert r.json() == {"success": False, "error": "Missing cart or customer data."}
    assert count_rows(IpOrderLog) == 0
    assert count_rows(OrderLog) == 0
    assert shopify.created == []


def test_blocked_ip_rejected_before_anything_else(client, shopify, otp_checks, sheet_posts):
    save_settings(otp_enabled=True, auto_ip_blocking_enabled=True, order_spam_protection_enabled=True, google_sheet_url="https://sheet")
    add_rows(BlockedIp(shop=SHOP, ip_address=IP, reason="manual", created_at=utc_now()))
    r = post_order(client, order_body(otp="123456"))
    assert r.status_code == 403
    assert r.json()["error"] == "Your IP has been blocked due to suspicious activity."
    assert count_rows(IpOrderLog) == 0
    assert otp_checks[0] == []
    assert shopify.created == []
    assert sheet_posts == []


def test_block_uses_appended_forwarded_entry(client, shopify):
    add_rows(BlockedIp(shop=SHOP, ip_address=IP, reason="manual", created_at=utc_now()))
    r = post_order(client, order_body(), ip=f"1.2.3.4, {IP}")
    assert r.status_code == 403
    assert shopify.created == []


def test_trusted_proxy_hops_are_skipped(client, shopify, monkeypatch):
    monkeypatch.setattr(config, "TRUSTED_PROXY_HOPS", 1)
    save_settings(auto_ip_blocking_enabled=True)
    add_rows(BlockedIp(shop=SHOP, ip_address=IP, reason="manual", created_at=utc_now()))
    assert post_order(client, order_body(), ip=f"1.2.3.4, {IP}, 10.0.0.1").status_code == 403

    assert post_order(client, order_body(), ip=f"{IP}, 198.51.100.7, 10.0.0.1").status_code == 200
    assert count_rows(IpOrderLog, ip_address="198.51.100.7") == 1
    assert count_rows(IpOrderLog, ip_address=IP) == 0


def test_auto_block_on_attempt_over_limit(client, shopify):
    save_settings(auto_ip_blocking_enabled=True, ip_attempt_limit=2, ip_attempt_window_minutes=60)
    assert post_order(client, order_body()).status_code == 200
    assert post_order(client, order_body()).status_code == 200
    r = post_order(client, order_body())
    assert r.status_code == 403
    assert count_rows(BlockedIp, ip_address=IP) == 1
    assert len(shopify.created) == 2
    # later requests hit the block-list and are not logged again
    assert post_order(client, order_body()).status_code == 403
    assert count_rows(IpOrderLog, ip_address=IP) == 3


def test_spam_protection_throttles_repeat_phone(client, shopify):
    save_settings(order_spam_protection_enabled=True, order_spam_window_minutes=60)
    assert post_order(client, order_body()).status_code == 200
    assert count_rows(OrderLog, phone=PHONE_E164) == 1
    r = post_order(client, order_body(), ip="198.51.100.1")
    assert r.status_code == 429
    assert r.json()["success"] is False
    assert len(shopify.created) == 1


def test_spam_log_not_written_when_disabled(client, shopify):
    assert post_order(client, order_body()).status_code == 200
    assert count_rows(OrderLog) == 0


def _otp_settings():
    save_settings(
        otp_enabled=True,
        twilio_account_sid="AC123",
        twilio_auth_token="secret",
        twilio_verify_service_sid="VA123",
    )
    add_rows(OtpLog(shop=SHOP, phone=PHONE_E164, status="pending", created_at=utc_now()))


def test_otp_approved_allows_order(client, shopify, otp_checks):
    _otp_settings()
    r = post_order(client, order_body(otp="123456"))
    assert r.status_code == 200
    assert otp_checks[0] == [(PHONE_E164, "123456")]


@pytest.mark.parametrize(
    "approved,error",
    [
        (False, None),
        (True, twilio_verify.TwilioVerifyError("Twilio Verify error 404: not found")),
    ],
)
def test_otp_failures_map_to_generic_message(client, shopify, otp_checks, approved, error):
    _otp_settings()
    otp_checks[1].update({"approved": approved, "error": error})
    r = post_order(client, order_body(otp="000000"))
    assert r.status_code == 401
    assert r.json() == {"success": False, "error": "Invalid OTP."}
    assert shopify.created == []


def test_otp_missing_code(client, shopify, otp_checks):
    _otp_settings()
    r = post_order(client, order_body())
    assert r.status_code == 401
    assert otp_checks[0] == []


def test_otp_expired_without_recent_send(client, shopify, otp_checks):
    save_settings(otp_enabled=True, otp_validity_minutes=5, twilio_account_sid="AC1", twilio_auth_token="t", twilio_verify_service_sid="VA1")
    add_rows(OtpLog(shop=SHOP, phone=PHONE_E164, status="pending", created_at=utc_now() - timedelta(minutes=10)))
    r = post_order(client, order_body(otp="123456"))
    assert r.status_code == 401
    assert otp_checks[0] == []


def test_draft_create_user_errors(client, shopify):
    shopify.create_errors = "Variant is invalid, Email is invalid"
    r = post_order(client, order_body())
    assert r.status_code == 422
    assert r.json() == {"success": False, "error": "Variant is invalid, Email is invalid"}
    assert shopify.completed == []


def test_draft_complete_user_errors(client, shopify):
    save_settings(order_spam_protection_enabled=True)
    shopify.complete_errors = "Draft order is already completed"
    r = post_order(client, order_body())
    assert r.status_code == 422
    assert r.json()["error"] == "Draft order is already completed"
    assert count_rows(OrderLog) == 0


def test_completed_order_without_payload_returns_null_id(client, shopify):
    shopify.order = {}
    r = post_order(client, order_body())
    assert r.status_code == 200
    assert r.json()["orderId"] is None


def test_webhook_receives_order_summary(client, shopify, sheet_posts):
    save_settings(google_sheet_url="https://script.google.com/macros/s/abc/exec")
    r = post_order(client, order_body())
    assert r.status_code == 200
    url, payload = sheet_posts[0]
    assert url == "https://script.google.com/macros/s/abc/exec"
    assert payload["orderId"] == "9001"
    assert payload["customer"]["phone"] == PHONE_E164
    assert payload["customer"]["city"] == "Lahore"
    assert payload["products"] == ["Kurta x 5"]
    assert payload["total"] == 750.0


def test_shopify_unreachable_maps_to_upstream_error(client, installed_shop, monkeypatch):
    def handler(request):
        raise httpx.ConnectError("boom", request=request)

    patch_async_client(monkeypatch, handler)
    r = post_order(client, order_body())
    assert r.status_code == 502
    assert r.json()["success"] is False


def test_unsigned_request_rejected(client):
    r = client.post("/api/proxy/create-order", params={"shop": SHOP, "signature": "bad"}, json=order_body())
    assert r.status_code == 401
