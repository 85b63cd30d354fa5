"""
Database Schemas for the storefront

Each Pydantic model maps to a MongoDB collection or to one request body.
Documents and JSON bodies use camelCase keys; Python code uses snake_case.

Collections:
- products
- banners
- orders
- users
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from order_status import OrderStatus

PaymentMethod = Literal["cash_on_delivery", "online"]
PaymentStatus = Literal["pending", "paid"]

PAYMENT_METHOD_ALIASES = {
    "cod": "cash_on_delivery",
    "cash_on_delivery": "cash_on_delivery",
    "online": "online",
    "razorpay": "online",
}


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class Product(CamelModel):
    """
    Products collection schema
    Collection name: "products"
    """
    title: str = Field(..., min_length=1, description="Product title")
    slug: str = Field("", description="URL slug")
    brand: str = Field(..., min_length=1, description="Product brand")
    category: str = Field(..., min_length=1, description="Category slug, e.g. laptops")
    description: str = Field("", description="Product description")
    price: float = Field(..., ge=0, allow_inf_nan=False, description="Price in INR")
    discount_price: Optional[float] = Field(None, ge=0, description="Sale price in INR")
    images: List[str] = Field(default_factory=list, description="Image URLs")
    image: str = Field("", description="Primary image URL")
    specs: Dict[str, Any] = Field(default_factory=dict, description="Key specifications")
    rating: float = Field(0, ge=0, le=5, description="Average rating")
    review_count: int = Field(0, ge=0, description="Number of reviews")
    stock: int = Field(0, ge=0, description="Units in stock")
    is_featured: bool = False
    free_delivery: bool = False

    @model_validator(mode="after")
    def sync_images(self):
        # image defaults to the first of images and seeds images when that is empty
        if not self.image and self.images:
            self.image = self.images[0]
        elif self.image and not self.images:
            self.images = [self.image]
        return self


class ProductUpdateRequest(CamelModel):
    title: Optional[str] = None
    slug: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    discount_price: Optional[float] = Field(None, ge=0)
    images: Optional[List[str]] = None
    image: Optional[str] = None
    specs: Optional[Dict[str, Any]] = None
    rating: Optional[float] = Field(None, ge=0, le=5)
    review_count: Optional[int] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    is_featured: Optional[bool] = None
    free_delivery: Optional[bool] = None


class Banner(CamelModel):
    """
    Banners collection schema
    Collection name: "banners"
    """
    title: str = Field(..., min_length=1)
    subtitle: str = ""
    image: str = Field(..., min_length=1, description="Image URL")
    link: str = "/products"
    active: bool = True


class BannerUpdateRequest(CamelModel):
    title: Optional[str] = None
    subtitle: Optional[str] = None
    image: Optional[str] = None
    link: Optional[str] = None
    active: Optional[bool] = None


class BannerStatusRequest(CamelModel):
    active: bool


class User(CamelModel):
    """
    Users collection schema
    Collection name: "users"
    """
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password_hash: Optional[str] = Field(None, description="BCrypt password hash")
    phone: str = ""
    role: Literal["user", "admin"] = "user"


class SignupRequest(CamelModel):
    name: str
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginRequest(CamelModel):
    email: EmailStr
    password: str


class SetRoleRequest(CamelModel):
    uid: Optional[str] = None
    email: Optional[EmailStr] = None
    role: Literal["user", "admin"] = "user"
    display_name: str = ""
    phone: str = ""


# ----------------------- Orders -----------------------
class OrderLineItem(CamelModel):
    product_id: str = Field(
        ...,
        validation_alias=AliasChoices("productId", "product_id", "id"),
        serialization_alias="productId",
    )
    title: str = ""
    unit_price: float = Field(
        ...,
        ge=0,
        allow_inf_nan=False,
        validation_alias=AliasChoices("unitPrice", "unit_price", "price"),
        serialization_alias="unitPrice",
    )
    quantity: int = Field(..., gt=0, strict=True)
    image: Optional[str] = None

    @field_validator("product_id", mode="before")
    @classmethod
    def product_id_not_blank(cls, v):
        if v is None or not str(v).strip():
            raise ValueError("product id is required")
        return str(v).strip()


class ShippingAddress(CamelModel):
    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    postal_code: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("postalCode", "postal_code", "pincode"),
        serialization_alias="postalCode",
    )
    landmark: Optional[str] = None


class OrderCreateRequest(CamelModel):
    user_id: str = Field(..., min_length=1)
    user_email: Optional[EmailStr] = None
    items: List[OrderLineItem] = Field(..., min_length=1)
    total_amount: float = Field(..., allow_inf_nan=False)
    payment_method: PaymentMethod = "cash_on_delivery"
    shipping_address: ShippingAddress
    payment_id: Optional[str] = None

    @field_validator("user_email", mode="before")
    @classmethod
    def blank_email_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("payment_method", mode="before")
    @classmethod
    def normalize_payment_method(cls, v):
        if v is None or v == "":
            return "cash_on_delivery"
        if isinstance(v, str):
            return PAYMENT_METHOD_ALIASES.get(v.strip().lower(), v)
        return v


class Order(CamelModel):
    """
    Orders collection schema
    Collection name: "orders"
    """
    user_id: str
    user_email: str = ""
    items: List[OrderLineItem]
    total_amount: float
    status: OrderStatus = "confirmed"
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    payment_id: Optional[str] = None
    shipping_address: ShippingAddress
    ordered_at: datetime
    updated_at: datetime
    follow_up_reminder_sent_at: Optional[datetime] = None
    follow_up_reminder_status: Optional[OrderStatus] = None


class StatusUpdateRequest(CamelModel):
    status: str = Field(..., min_length=1)


class PaymentVerifyRequest(CamelModel):
    gateway_order_id: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("gatewayOrderId", "razorpay_order_id")
    )
    gateway_payment_id: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("gatewayPaymentId", "razorpay_payment_id")
    )
    signature: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("signature", "razorpay_signature")
    )


class RemoteOrderRequest(CamelModel):
    amount: float = Field(..., gt=0, allow_inf_nan=False)
