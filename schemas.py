"""
Database and API schemas for the storefront.

Each stored model maps to a MongoDB collection named after the lowercase
class name (User -> "user", Product -> "product", ...). Documents are kept in
snake_case; the API speaks camelCase through ``ApiModel`` aliases and still
accepts snake_case field names on input.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

PLACEHOLDER_IMAGE = "https://placehold.co/400x300/E0E0E0/333333?text=No+Image"

ORDER_STATUSES = ("pending", "completed", "shipped", "delivered", "cancelled")
WALLET_REFERENCE = "WALLET_PAYMENT"


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------- Collections ----------------------

class User(BaseModel):
    username: str = Field(..., min_length=3)
    email: EmailStr
    password_hash: str
    role: str = "user"  # user | admin
    wallet_balance: float = Field(0, ge=0)
    processed_references: List[str] = []


class Product(BaseModel):
    name: str
    description: str
    price: float = Field(..., ge=0)
    category: str
    image_url: str = PLACEHOLDER_IMAGE
    stock: int = Field(0, ge=0)


class CartItem(BaseModel):
    product_id: str
    name: str
    image_url: Optional[str] = None
    price: float  # snapshot taken when the line was first added
    quantity: int = Field(..., ge=1)


class Cart(BaseModel):
    user_id: str
    items: List[CartItem] = []


class ShippingAddress(ApiModel):
    full_name: str = ""
    email: str = ""
    address: str = ""
    city: str = ""
    postal_code: str = ""
    country: str = ""

    def is_complete(self) -> bool:
        return all([self.full_name, self.email, self.address, self.city, self.postal_code, self.country])


class OrderItem(BaseModel):
    product_id: str
    name: str
    image_url: Optional[str] = None
    price: float
    quantity: int = Field(..., ge=1)


class Order(BaseModel):
    user_id: str
    items: List[OrderItem]
    shipping_address: ShippingAddress
    total_amount: float = Field(..., ge=0)
    payment_method: str = "paystack"
    payment_status: str = "pending"  # pending, paid, failed
    status: str = "pending"  # pending, completed, shipped, delivered, cancelled


class WalletTransaction(BaseModel):
    reference: str
    user_id: str
    amount: float
    kind: str = "topup"


# ---------------------- Requests ----------------------

class RegisterRequest(ApiModel):
    username: str = Field(..., min_length=3)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginRequest(ApiModel):
    email: EmailStr
    password: str


class UpdateDetailsRequest(ApiModel):
    username: Optional[str] = Field(None, min_length=3)
    email: Optional[EmailStr] = None


class UpdatePasswordRequest(ApiModel):
    current_password: str
    new_password: str = Field(..., min_length=6)


class ForgotPasswordRequest(ApiModel):
    email: EmailStr


class ResetPasswordRequest(ApiModel):
    password: str = Field(..., min_length=6)


class ProductCreate(ApiModel):
    name: str
    description: str
    price: float = Field(..., ge=0)
    category: str
    image_url: str = PLACEHOLDER_IMAGE
    stock: int = Field(0, ge=0)


class ProductUpdate(ApiModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    image_url: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)


class CartAddRequest(ApiModel):
    product_id: str = Field("", validation_alias=AliasChoices("productId", "product_id", "product"))
    quantity: int = 0


class CartQuantityRequest(ApiModel):
    quantity: Optional[int] = None


class GuestCartItem(ApiModel):
    product_id: str = Field(..., validation_alias=AliasChoices("productId", "product_id", "product"))
    name: Optional[str] = None
    quantity: int = 1


class CartMergeRequest(ApiModel):
    items: List[GuestCartItem] = []


class OrderItemIn(ApiModel):
    product_id: str = Field(..., validation_alias=AliasChoices("productId", "product_id", "product"))
    name: str = ""
    image_url: Optional[str] = None
    price: float
    quantity: int = Field(..., ge=1)


class OrderCreate(ApiModel):
    items: List[OrderItemIn] = []
    total_amount: float = 0
    shipping_address: ShippingAddress = Field(default_factory=ShippingAddress)
    payment_method: str = "paystack"


class OrderStatusUpdate(ApiModel):
    status: Optional[str] = None


class TopUpRequest(ApiModel):
    amount: float = 0


class ReferenceRequest(ApiModel):
    reference: str = ""


class PaystackInitializeRequest(ApiModel):
    amount: float = 0  # minor units, may carry float noise (1998.9999999999998)
    email: str = ""
    order_id: str = ""


# ---------------------- Responses ----------------------

class UserPublic(ApiModel):
    id: str
    username: str
    email: str
    role: str = "user"
    wallet_balance: float = 0


class AuthResponse(ApiModel):
    success: bool = True
    token: str
    user: UserPublic


class UserEnvelope(ApiModel):
    success: bool = True
    data: UserPublic


class ProductOut(ApiModel):
    id: str
    name: str
    description: str
    price: float
    category: str
    image_url: Optional[str] = None
    stock: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProductEnvelope(ApiModel):
    success: bool = True
    data: ProductOut


class ProductPage(ApiModel):
    success: bool = True
    count: int
    total_products: int
    total_pages: int
    page: int
    limit: int
    products: List[ProductOut]


class CartItemOut(ApiModel):
    product_id: str
    name: str
    image_url: Optional[str] = None
    price: float
    quantity: int


class SkippedItem(ApiModel):
    product_id: str
    name: Optional[str] = None
    error: str


class CartOut(ApiModel):
    id: Optional[str] = None
    user_id: str
    items: List[CartItemOut] = []
    total_amount: float = 0
    message: Optional[str] = None
    skipped: Optional[List[SkippedItem]] = None


class OrderOut(ApiModel):
    id: str
    user_id: str
    items: List[CartItemOut]
    shipping_address: ShippingAddress
    total_amount: float
    payment_method: str
    payment_status: str
    status: str
    payment_reference: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OrderEnvelope(ApiModel):
    success: bool = True
    message: Optional[str] = None
    order: OrderOut


class OrderList(ApiModel):
    success: bool = True
    count: int
    orders: List[OrderOut]


class PaymentSession(ApiModel):
    success: bool = True
    authorization_url: str
    access_code: Optional[str] = None
    reference: str


class WalletBalance(ApiModel):
    success: bool = True
    message: Optional[str] = None
    wallet_balance: float
