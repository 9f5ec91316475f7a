"""
Order Service — 値オブジェクトとリクエスト / レスポンスモデル

カートは型付きの値オブジェクトとして扱う（明細・オプション・価格）。
価格は呼び出し側から受け取った値をそのまま保存し、再計算しない。
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, model_validator


class ItemOption(BaseModel):
    name: str
    answers: list[str] = []
    prices: list[float] = []
    quantities: list[int] = []


class CartItem(BaseModel):
    product_id: str
    product_name: str = ""
    variant_id: str = ""
    quantity: int = Field(gt=0)
    base_price: float = 0
    total_price: float = 0
    options: list[ItemOption] = []


class Cart(BaseModel):
    id: str
    items: list[CartItem]


class PricingAdjustment(BaseModel):
    name: str
    type: Literal["fee", "discount", "tax"]
    is_percentage: bool = False
    value: float = 0


class Pricing(BaseModel):
    subtotal: float = 0
    adjustments: list[PricingAdjustment] = []
    final_total: float = 0


class DeliveryAddress(BaseModel):
    street: str | None = None
    apartment: str | None = None
    city: str | None = None
    zip_code: str | None = None


class CustomerInfo(BaseModel):
    """
    顧客情報。customer_id があれば既存顧客への参照で、
    残りのフィールドは連絡先・配送先の更新値として扱う。
    customer_id がなければ name 必須の「手入力顧客」スナップショット。
    """

    customer_id: str | None = None
    name: str | None = None
    phone: str | None = None
    email: str | None = None
    delivery_address: DeliveryAddress | None = None

    def has_identity(self) -> bool:
        return bool(self.customer_id) or bool(self.name)


class ManualCustomer(BaseModel):
    """注文に埋め込む顧客スナップショット（不変）"""

    name: str
    phone: str | None = None
    email: str | None = None
    delivery_address: DeliveryAddress | None = None


# ── リクエスト ───────────────────────────────────


class PlaceOrderRequest(BaseModel):
    cart: Cart
    customer: CustomerInfo
    pricing: Pricing = Field(default_factory=Pricing)
    notes: str | None = None


# ── 注文 ─────────────────────────────────────────


class Order(BaseModel):
    """
    永続化された注文。

    customer_id と manual_customer はどちらか一方だけを持つ。
    """

    id: str
    tenant_id: str
    order_number: int
    invoice_number: int
    cart_id: str
    customer_id: str | None = None
    manual_customer: ManualCustomer | None = None
    items: list[CartItem]
    pricing: Pricing
    notes: str | None = None
    order_status: str = "Pending"
    payment_status: str = "Unpaid"
    fulfillment_status: str = "Unfulfilled"
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @model_validator(mode="after")
    def _one_customer_identity(self) -> "Order":
        if (self.customer_id is None) == (self.manual_customer is None):
            raise ValueError("order needs exactly one of customer_id / manual_customer")
        return self

    @property
    def recipient_email(self) -> str | None:
        if self.manual_customer is not None:
            return self.manual_customer.email
        return None
