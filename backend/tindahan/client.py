# Overview: HTTP client for the POS API; one configured base URL shared by every caller.

# backend/tindahan/client.py
"""
PosClient wraps the REST surface with one method per endpoint.

The server is authoritative: commands return the confirmed state, and
callers re-read lists (products, alerts, balances) after each command instead
of patching local copies.
"""
from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

import httpx

DEFAULT_BASE_URL = "http://localhost:8000"


class ApiError(Exception):
    """Non-2xx response. payload is the decoded JSON body (or {"error": text})."""

    def __init__(self, status_code: int, payload: Dict[str, Any]):
        self.status_code = status_code
        self.payload = payload
        self.code = payload.get("code")
        super().__init__(f"{status_code}: {payload.get('error', 'request failed')}")


class PosClient:
    """
    HTTP client for the POS API.

    base_url defaults to TINDAHAN_API_URL, then http://localhost:8000.
    transport is passed through to httpx (tests use httpx.WSGITransport).
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = (base_url or os.environ.get("TINDAHAN_API_URL") or DEFAULT_BASE_URL).rstrip("/")
        self.client = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "PosClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs) -> Any:
        response = self.client.request(method, path, **kwargs)
        if response.is_success:
            if response.headers.get("content-type", "").startswith("application/json"):
                return response.json()
            return response.text
        try:
            payload = response.json()
        except ValueError:
            payload = {"error": response.text}
        if not isinstance(payload, dict):
            payload = {"error": str(payload)}
        raise ApiError(response.status_code, payload)

    # Products

    def list_products(self, filter: str = "all", category: Optional[str] = None, search: Optional[str] = None) -> List[Dict]:
        params = {"filter": filter}
        if category:
            params["category"] = category
        if search:
            params["search"] = search
        return self._request("GET", "/products", params=params)

    def get_product(self, product_id: int) -> Dict:
        return self._request("GET", f"/products/{product_id}")

    def get_product_by_barcode(self, code: str) -> Dict:
        return self._request("GET", f"/products/barcode/{code}")

    def low_stock(self) -> List[Dict]:
        return self._request("GET", "/products/low-stock")

    def near_expiration(self, days: Optional[int] = None) -> List[Dict]:
        params = {"days": days} if days is not None else None
        return self._request("GET", "/products/near-expiration", params=params)

    def create_product(self, **fields) -> Dict:
        return self._request("POST", "/products", json=fields)

    def update_product(self, product_id: int, **fields) -> Dict:
        return self._request("PUT", f"/products/{product_id}", json=fields)

    def delete_product(self, product_id: int) -> Dict:
        return self._request("DELETE", f"/products/{product_id}")

    def restock(self, product_id: int, quantity: int, notes: Optional[str] = None, expiration_date: Optional[str] = None) -> Dict:
        body: Dict[str, Any] = {"quantity": quantity}
        if notes:
            body["notes"] = notes
        if expiration_date:
            body["expiration_date"] = expiration_date
        return self._request("POST", f"/products/{product_id}/restock", json=body)

    def resolve_expiration(self, product_id: int, expiration_date: str, action: str, quantity_to_pull: Optional[int] = None) -> Dict:
        body: Dict[str, Any] = {"productId": product_id, "expirationDate": expiration_date, "action": action}
        if quantity_to_pull is not None:
            body["quantityToPull"] = quantity_to_pull
        return self._request("POST", "/products/expiration-notification", json=body)

    def import_products(self, records: List[Dict]) -> Dict:
        return self._request("POST", "/products/import-csv", json={"products": records})

    def generate_barcode(self) -> str:
        return self._request("POST", "/barcode/generate")["barcode"]

    # Sales

    def commit_sale(self, items: List[Dict], payment_method: str, customer_name: Optional[str] = None, total: Any = None) -> Dict:
        body: Dict[str, Any] = {"items": items, "paymentMethod": payment_method}
        if customer_name is not None:
            body["customer_name"] = customer_name
        if total is not None:
            body["total"] = total
        return self._request("POST", "/sales", json=body)

    def list_sales(self, start_date: Optional[str] = None, end_date: Optional[str] = None) -> List[Dict]:
        return self._request("GET", "/sales", params=_range(start_date, end_date))

    def sale_details(self, start_date: Optional[str] = None, end_date: Optional[str] = None, **filters) -> List[Dict]:
        params = _range(start_date, end_date)
        params.update({k: v for k, v in filters.items() if v})
        return self._request("GET", "/sales/details", params=params)

    def cancel_sale(self, sale_id: int, reason: str) -> Dict:
        return self._request("POST", f"/sales/{sale_id}/cancel", json={"reason": reason})

    def mark_paid(self, sale_id: int) -> Dict:
        return self._request("PUT", f"/sales/{sale_id}/mark-paid")

    def bestsellers(self, limit: Optional[int] = None, days: Optional[int] = None) -> List[Dict]:
        params = {k: v for k, v in (("limit", limit), ("days", days)) if v is not None}
        return self._request("GET", "/sales/bestsellers", params=params)

    def analytics_summary(self, period: Any = None) -> List[Dict]:
        params = {"period": period} if period is not None else None
        return self._request("GET", "/sales/analytics/summary", params=params)

    # Cash

    def cash_balance(self) -> Dict:
        return self._request("GET", "/cash/balance")

    def update_cash(
        self,
        transaction_type: str,
        description: str,
        cash: Any = None,
        gcash: Any = None,
        paymaya: Any = None,
        reference_id: Optional[int] = None,
    ) -> Dict:
        body: Dict[str, Any] = {"transaction_type": transaction_type, "description": description}
        for field, value in (("cashOnHand", cash), ("gcashBalance", gcash), ("paymayaBalance", paymaya)):
            if value is not None:
                body[field] = value
        if reference_id is not None:
            body["reference_id"] = reference_id
        return self._request("POST", "/cash/update", json=body)

    def cash_history(self, start_date: Optional[str] = None, end_date: Optional[str] = None) -> List[Dict]:
        return self._request("GET", "/cash/history", params=_range(start_date, end_date))


def _range(start_date: Optional[str], end_date: Optional[str]) -> Dict[str, str]:
    params = {}
    if start_date:
        params["startDate"] = start_date
    if end_date:
        params["endDate"] = end_date
    return params
