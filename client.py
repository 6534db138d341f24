"""
Typed client for the POS HTTP API.

Create/update payloads are checked against the same pydantic schemas the
server uses, so an invalid form raises pydantic.ValidationError before any
request is made. Error responses raise errors.ApiError.
"""
import json
import logging
import threading
from typing import Iterable, List, Optional, Union

import httpx
from websockets.exceptions import ConnectionClosedError
from websockets.sync.client import connect

import schemas
from cart import CartStore
from errors import ApiError
from query_cache import QueryClient

logger = logging.getLogger(__name__)


class PosClient:
    def __init__(self, http: httpx.Client, query_client: Optional[QueryClient] = None, access_token: Optional[str] = None):
        self.http = http
        self.query_client = query_client or QueryClient()
        self.access_token = access_token

    def _request(self, method: str, path: str, **kwargs):
        headers = kwargs.pop("headers", {})
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        res = self.http.request(method, path, headers=headers, **kwargs)
        if res.status_code >= 400:
            try:
                body = res.json()
            except ValueError:
                body = None
            if not isinstance(body, dict):
                body = {}
            error = body.get("error") or f"HTTP error! status: {res.status_code}"
            logger.error("%s %s failed: %s", method, path, body.get("details") or error)
            raise ApiError(res.status_code, error, body.get("details"))
        return res.json()

    # --------------------------- products ---------------------------
    def get_products(self, search: Optional[str] = None) -> List[schemas.ProductResponse]:
        params = {"search": search} if search else None
        return [schemas.ProductResponse.model_validate(p) for p in self._request("GET", "/products", params=params)]

    def get_product(self, product_id: str) -> schemas.ProductResponse:
        return schemas.ProductResponse.model_validate(self._request("GET", f"/products/{product_id}"))

    def create_product(self, product: Union[dict, schemas.ProductCreate]) -> schemas.ProductResponse:
        payload = schemas.ProductCreate.model_validate(product)
        data = self._request("POST", "/products", json=payload.model_dump(mode="json", exclude_none=True))
        return schemas.ProductResponse.model_validate(data)

    def update_product(self, product_id: str, product: Union[dict, schemas.ProductUpdate]) -> schemas.ProductResponse:
        payload = schemas.ProductUpdate.model_validate(product)
        data = self._request("PATCH", f"/products/{product_id}", json=payload.model_dump(mode="json", exclude_unset=True))
        return schemas.ProductResponse.model_validate(data)

    def delete_product(self, product_id: str) -> bool:
        self._request("DELETE", f"/products/{product_id}")
        return True

    # --------------------------- customers ---------------------------
    def get_customers(self, search: Optional[str] = None) -> List[schemas.CustomerResponse]:
        params = {"search": search} if search else None
        return [schemas.CustomerResponse.model_validate(c) for c in self._request("GET", "/customers", params=params)]

    def create_customer(self, customer: Union[dict, schemas.CustomerCreate]) -> schemas.CustomerResponse:
        payload = schemas.CustomerCreate.model_validate(customer)
        data = self._request("POST", "/customers", json=payload.model_dump(mode="json"))
        return schemas.CustomerResponse.model_validate(data)

    def update_customer(self, customer_id: str, customer: Union[dict, schemas.CustomerUpdate]) -> schemas.CustomerResponse:
        payload = schemas.CustomerUpdate.model_validate(customer)
        data = self._request("PATCH", f"/customers/{customer_id}", json=payload.model_dump(mode="json", exclude_unset=True))
        return schemas.CustomerResponse.model_validate(data)

    def delete_customer(self, customer_id: str) -> bool:
        self._request("DELETE", f"/customers/{customer_id}")
        return True

    # --------------------------- orders ---------------------------
    def create_order(self, order: Union[dict, schemas.OrderCreate]) -> schemas.OrderCreated:
        payload = schemas.OrderCreate.model_validate(order)
        data = self._request("POST", "/orders", json=payload.model_dump(mode="json", by_alias=True))
        return schemas.OrderCreated.model_validate(data)

    def get_orders(self, search: Optional[str] = None) -> List[schemas.OrderResponse]:
        params = {"search": search} if search else None
        return [schemas.OrderResponse.model_validate(o) for o in self._request("GET", "/orders", params=params)]

    def get_order(self, order_id: str) -> schemas.OrderResponse:
        return schemas.OrderResponse.model_validate(self._request("GET", f"/orders/{order_id}"))

    # --------------------------- user profiles ---------------------------
    def get_user_profiles(self, search: Optional[str] = None) -> List[schemas.UserProfileResponse]:
        params = {"search": search} if search else None
        return [schemas.UserProfileResponse.model_validate(u) for u in self._request("GET", "/users", params=params)]

    def get_user_profile(self, user_id: str) -> Optional[schemas.UserProfileResponse]:
        data = self._request("GET", f"/users/{user_id}")
        if data is None:
            return None
        return schemas.UserProfileResponse.model_validate(data)

    def update_user_profile(self, user_id: str, profile: Union[dict, schemas.UserProfileUpdate]) -> schemas.UserProfileResponse:
        payload = schemas.UserProfileUpdate.model_validate(profile)
        data = self._request("PATCH", f"/users/{user_id}", json=payload.model_dump(mode="json", exclude_unset=True))
        return schemas.UserProfileResponse.model_validate(data)

    # --------------------------- payment / stats ---------------------------
    def simulate_payment(self, order_id: str, amount: float) -> schemas.PaymentResponse:
        payload = schemas.PaymentRequest(order_id=order_id, amount=amount)
        data = self._request("POST", "/payment/simulate", json=payload.model_dump(mode="json", by_alias=True))
        return schemas.PaymentResponse.model_validate(data)

    def get_dashboard_stats(self) -> schemas.DashboardStats:
        return schemas.DashboardStats.model_validate(self._request("GET", "/dashboard/stats"))

    # --------------------------- cached queries ---------------------------
    def products(self) -> List[schemas.ProductResponse]:
        return self.query_client.fetch_query(("products",), self.get_products)

    def orders(self) -> List[schemas.OrderResponse]:
        return self.query_client.fetch_query(("orders",), self.get_orders)

    def user_profiles(self) -> List[schemas.UserProfileResponse]:
        return self.query_client.fetch_query(("user_profiles",), self.get_user_profiles)

    def user_profile(self, user_id: str) -> Optional[schemas.UserProfileResponse]:
        return self.query_client.fetch_query(("user_profiles", user_id), lambda: self.get_user_profile(user_id))

    # --------------------------- realtime ---------------------------
    def realtime_url(self, table: str = "*") -> str:
        base = str(self.http.base_url).rstrip("/")
        # http -> ws, https -> wss
        return f"ws{base[4:]}/realtime/{table}"

    def apply_change(self, change: dict):
        table = change.get("table")
        if table:
            logger.debug("%s on %s, refreshing cached queries", change.get("type"), table)
            self.query_client.invalidate_queries((table,))

    def listen(self, messages: Iterable):
        """Apply every change message (JSON text or dict) until the stream ends."""
        for message in messages:
            if isinstance(message, (str, bytes)):
                message = json.loads(message)
            self.apply_change(message)

    def _listen_until_closed(self, connection):
        try:
            self.listen(connection)
        except ConnectionClosedError as e:
            logger.warning("Realtime connection lost: %s", e)

    def watch_realtime(self, table: str = "*"):
        """
        Keep the query cache in step with writes made by other tills.
        Returns the open websocket connection; close it to stop listening.
        """
        connection = connect(self.realtime_url(table))
        threading.Thread(target=self._listen_until_closed, args=(connection,), daemon=True).start()
        return connection

    # --------------------------- checkout ---------------------------
    def checkout(
        self,
        cart: CartStore,
        payment_method: str,
        customer_id: Optional[str] = None,
        cash_received: Optional[float] = None,
    ) -> dict:
        """
        Place the cart as an order and empty it. Card sales then go through the
        payment simulation; if that fails the order stays recorded and the
        ApiError propagates.
        """
        total = cart.total()
        if payment_method == "cash" and cash_received is not None and cash_received < total:
            raise ValueError("Cash received is less than total amount")

        created = self.create_order(cart.to_order(payment_method, customer_id))
        # the order and its stock writes are stored from here on
        cart.clear()
        self.query_client.invalidate_queries(("products",))
        self.query_client.invalidate_queries(("orders",))

        result = {"order_id": created.order_id, "total": total}
        if payment_method == "cash" and cash_received is not None:
            result["change"] = round(cash_received - total, 2)
        if payment_method == "card":
            try:
                result["payment"] = self.simulate_payment(created.order_id, total).data
            except ApiError:
                logger.error("Payment failed for order %s", created.order_id)
                raise
        return result
