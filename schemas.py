from datetime import datetime
from typing import List, Optional

from pydantic import (
    AliasChoices,
    AnyHttpUrl,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel

_http_url = TypeAdapter(AnyHttpUrl)


def _reject_null(value, info):
    if value is None:
        raise ValueError(f"{info.field_name} may not be null")
    return value


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


# ----------------- products -----------------
class ProductBase(BaseModel):
    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0.01)
    category: str = Field(..., min_length=1)
    stock: int = Field(..., ge=0)
    barcode: Optional[str] = None
    image_url: Optional[str] = None

    @field_validator("barcode", "image_url")
    @classmethod
    def blank_to_none(cls, value):
        return _blank_to_none(value)


class ProductCreate(ProductBase):
    pass


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0.01)
    category: Optional[str] = Field(None, min_length=1)
    stock: Optional[int] = Field(None, ge=0)
    barcode: Optional[str] = None
    image_url: Optional[str] = None

    @field_validator("name", "price", "category", "stock")
    @classmethod
    def not_null(cls, value, info):
        return _reject_null(value, info)

    @field_validator("barcode", "image_url")
    @classmethod
    def blank_to_none(cls, value):
        return _blank_to_none(value)


class ProductResponse(ProductBase):
    id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


# ----------------- customers -----------------
class CustomerBase(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=1)


class CustomerCreate(CustomerBase):
    pass


class CustomerUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, min_length=1)
    status: Optional[str] = Field(None, min_length=1)

    @field_validator("name", "email", "phone", "status")
    @classmethod
    def not_null(cls, value, info):
        return _reject_null(value, info)


class CustomerResponse(BaseModel):
    id: str
    name: str
    email: str
    phone: str
    total_orders: int = 0
    total_spent: float = 0
    status: str = "active"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


# ----------------- user profiles -----------------
class UserProfileUpdate(BaseModel):
    full_name: Optional[str] = Field(None, min_length=1)
    role: Optional[str] = Field(None, min_length=1)
    avatar_url: Optional[str] = None

    @field_validator("full_name", "role")
    @classmethod
    def not_null(cls, value, info):
        return _reject_null(value, info)

    @field_validator("avatar_url")
    @classmethod
    def check_avatar_url(cls, value):
        value = _blank_to_none(value)
        if value is not None:
            try:
                _http_url.validate_python(value)
            except ValidationError:
                raise ValueError("Invalid URL")
        return value


class UserProfileResponse(BaseModel):
    id: str
    full_name: Optional[str] = None
    role: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


# ----------------- orders -----------------
class CartLine(BaseModel):
    id: str
    price: float = Field(..., gt=0)
    quantity: int = Field(..., ge=1)
    stock: int
    name: Optional[str] = None
    category: Optional[str] = None
    barcode: Optional[str] = None


class OrderCreate(BaseModel):
    cart: List[CartLine] = Field(..., min_length=1)
    total: float = Field(..., ge=0)
    payment_method: str = Field(..., min_length=1)
    customer_id: Optional[str] = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OrderCreated(BaseModel):
    success: bool = True
    order_id: str

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OrderCustomer(BaseModel):
    name: str
    email: str

    model_config = {"from_attributes": True}


class OrderCreator(BaseModel):
    full_name: Optional[str] = None

    model_config = {"from_attributes": True}


class OrderItemProduct(BaseModel):
    name: str
    price: float

    model_config = {"from_attributes": True}


class OrderItemResponse(BaseModel):
    id: str
    order_id: str
    product_id: str
    quantity: int
    unit_price: float
    total_price: float
    product: Optional[OrderItemProduct] = Field(
        None, validation_alias=AliasChoices("product", "products"), serialization_alias="products"
    )

    model_config = {"from_attributes": True}


class OrderResponse(BaseModel):
    id: str
    customer_id: Optional[str] = None
    total_amount: float
    tax_amount: float
    payment_method: str
    payment_status: str
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
    customer: Optional[OrderCustomer] = Field(
        None, validation_alias=AliasChoices("customer", "customers"), serialization_alias="customers"
    )
    creator: Optional[OrderCreator] = Field(
        None, validation_alias=AliasChoices("creator", "user_profiles"), serialization_alias="user_profiles"
    )
    items: List[OrderItemResponse] = Field(
        [], validation_alias=AliasChoices("items", "order_items"), serialization_alias="order_items"
    )

    model_config = {"from_attributes": True}


# ----------------- payment -----------------
class PaymentRequest(BaseModel):
    order_id: str = Field(..., min_length=1)
    amount: float = Field(..., ge=0)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PaymentTransaction(BaseModel):
    transaction_id: str
    order_id: str
    gross_amount: float
    payment_type: str = "credit_card"
    transaction_status: str = "capture"
    fraud_status: str = "accept"
    transaction_time: datetime


class PaymentResponse(BaseModel):
    success: bool = True
    data: PaymentTransaction


# ----------------- dashboard -----------------
class DashboardStats(BaseModel):
    today_sales: float = 0
    today_orders: int = 0
    total_products: int = 0
    low_stock_products: int = 0
    total_users: int = 0

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ----------------- auth -----------------
class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)


class OtpLoginRequest(BaseModel):
    email: EmailStr


class SignupRequest(BaseModel):
    email: EmailStr
    full_name: str = Field(..., min_length=2)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OtpVerifyRequest(BaseModel):
    email: EmailStr
    otp: str = Field(..., min_length=6, max_length=6)


class SessionResponse(BaseModel):
    user: dict
    profile: Optional[UserProfileResponse] = None
