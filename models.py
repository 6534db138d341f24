from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from database import Base


def new_id() -> str:
    return str(uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UserProfile(Base):
    __tablename__ = "user_profiles"
    id = Column(String(36), primary_key=True)  # same id as the auth identity
    full_name = Column(String)
    role = Column(String)  # admin, staff, viewer
    avatar_url = Column(String)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now)


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("price > 0", name="products_price_positive"),
        CheckConstraint("stock >= 0", name="products_stock_non_negative"),
    )
    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String, nullable=False, index=True)
    price = Column(Float, nullable=False)
    category = Column(String, nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    barcode = Column(String)
    image_url = Column(Text)  # URL or data URL
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now)


class Customer(Base):
    __tablename__ = "customers"
    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String, nullable=False, index=True)
    email = Column(String, nullable=False)
    phone = Column(String, nullable=False)
    total_orders = Column(Integer, nullable=False, default=0)
    total_spent = Column(Float, nullable=False, default=0)
    status = Column(String, nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now)


class Order(Base):
    __tablename__ = "orders"
    id = Column(String(36), primary_key=True, default=new_id)
    customer_id = Column(String(36), ForeignKey("customers.id"))
    total_amount = Column(Float, nullable=False)
    tax_amount = Column(Float, nullable=False)
    payment_method = Column(String, nullable=False)  # cash, card, digital
    payment_status = Column(String, nullable=False, default="completed")
    created_at = Column(DateTime(timezone=True), default=utc_now, index=True)
    created_by = Column(String(36), ForeignKey("user_profiles.id"))

    customer = relationship("Customer", lazy="joined")
    creator = relationship("UserProfile", lazy="joined")
    items = relationship("OrderItem", back_populates="order", lazy="selectin")


class OrderItem(Base):
    __tablename__ = "order_items"
    __table_args__ = (CheckConstraint("quantity > 0", name="order_items_quantity_positive"),)
    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False)
    product_id = Column(String(36), ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float, nullable=False)
    total_price = Column(Float, nullable=False)

    order = relationship("Order", back_populates="items")
    product = relationship("Product", lazy="joined")
