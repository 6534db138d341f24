"""
Point-of-sale cart kept on the till.

Lines are keyed by product id and the whole cart is written to a local JSON
file after every change, so it survives a restart until checkout.
"""
import json
import logging
import os
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

import schemas
from config import CART_STORAGE_KEY, Config

logger = logging.getLogger(__name__)


class CartItem(BaseModel):
    id: str
    name: str
    price: float
    category: str = ""
    stock: int = 0
    barcode: Optional[str] = None
    quantity: int = Field(1, ge=1)


class CartStore:
    version = 0

    def __init__(self, storage_dir: Optional[str] = None):
        self.storage_dir = storage_dir or Config.CART_STORAGE_DIR
        self.path = os.path.join(self.storage_dir, f"{CART_STORAGE_KEY}.json")
        self._lines: Dict[str, CartItem] = {}
        self._load()

    # --------------------------- persistence ---------------------------
    def _load(self):
        if not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                saved = json.load(f)
            lines = [CartItem.model_validate(line) for line in saved.get("state", {}).get("cart", [])]
        except (OSError, ValueError) as e:
            logger.warning("Discarding unreadable cart at %s: %s", self.path, e)
            return
        self._lines = {line.id: line for line in lines}

    def _save(self):
        os.makedirs(self.storage_dir, exist_ok=True)
        payload = {"state": {"cart": [line.model_dump() for line in self._lines.values()]}, "version": self.version}
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(payload, f)

    # --------------------------- operations ---------------------------
    @property
    def items(self) -> List[CartItem]:
        return list(self._lines.values())

    def __len__(self):
        return len(self._lines)

    def get(self, product_id: str) -> Optional[CartItem]:
        return self._lines.get(product_id)

    def add(self, product) -> CartItem:
        """Add one unit of `product` (a ProductResponse, dict or CartItem)."""
        if isinstance(product, BaseModel):
            product = product.model_dump()
        existing = self._lines.get(product["id"])
        if existing:
            existing.quantity += 1
            line = existing
        else:
            fields = {k: v for k, v in product.items() if k in CartItem.model_fields and k != "quantity"}
            line = CartItem(**fields, quantity=1)
            self._lines[line.id] = line
        self._save()
        return line

    def remove(self, product_id: str):
        self._lines.pop(product_id, None)
        self._save()

    def update_quantity(self, product_id: str, quantity: int):
        if quantity <= 0:
            self.remove(product_id)
            return
        line = self._lines.get(product_id)
        if line:
            line.quantity = quantity
            self._save()

    def clear(self):
        self._lines = {}
        self._save()

    def total(self) -> float:
        return round(sum(line.price * line.quantity for line in self._lines.values()), 2)

    def to_order(self, payment_method: str, customer_id: Optional[str] = None) -> schemas.OrderCreate:
        return schemas.OrderCreate(
            cart=[schemas.CartLine(**line.model_dump()) for line in self._lines.values()],
            total=self.total(),
            payment_method=payment_method,
            customer_id=customer_id,
        )
