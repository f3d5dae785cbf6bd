"""Best-effort order export to the merchant's Google Sheets web app."""
from __future__ import annotations

import logging
from typing import Any, Dict

import httpx

from . import config

logger = logging.getLogger(__name__)

SHEET_HEADERS = ["Timestamp", "Order ID", "Customer Name", "Phone", "Address", "City", "Country", "Products", "Total Amount"]

APPS_SCRIPT_SOURCE = """function doPost(e) {
  try {
    var sheet = SpreadsheetApp.getActiveSpreadsheet().getActiveSheet();
    var data = JSON.parse(e.postData.contents);

    var timestamp = new Date();
    var orderId = data.orderId || 'N/A';
    var customerName = data.customer.name;
    var phone = data.customer.phone;
    var address = data.customer.address;
    var city = data.customer.city;
    var country = data.customer.country;
    var products = data.products.join('\\n');
    var totalAmount = data.total;

    sheet.appendRow([timestamp, orderId, customerName, phone, address, city, country, products, totalAmount]);

    return ContentService.createTextOutput(JSON.stringify({ "status": "success" })).setMimeType(ContentService.MimeType.JSON);
  } catch (error) {
    return ContentService.createTextOutput(JSON.stringify({ "status": "error", "message": error.toString() })).setMimeType(ContentService.MimeType.JSON);
  }
}"""


async def post_order_summary(url: str, payload: Dict[str, Any]) -> bool:
    """POST the order summary; never raises. Returns True on a 2xx/3xx reply."""
    try:
        # Apps Script web apps answer with a 302 to the script output
        async with httpx.AsyncClient(timeout=config.HTTP_TIMEOUT_SECONDS, follow_redirects=True) as client:
            resp = await client.post(url, json=payload)
        if resp.status_code >= 400:
            logger.warning("Order webhook returned %s for order %s", resp.status_code, payload.get("orderId"))
            return False
        return True
    except Exception as e:
        logger.warning("Order webhook failed for order %s: %s", payload.get("orderId"), e)
        return False
