"""
Order Service — イベント定義

コミット後に外部へ通知する事実(イベント)。
過去形で命名し、不変(immutable)として扱う。
"""

from datetime import datetime

from pydantic import BaseModel


class OrderPlaced(BaseModel):
    """注文が確定した（メール送信ワーカー向け）"""
    tenant_id: str
    order_id: str
    order_number: int
    invoice_number: int
    recipient_email: str
    recipient_name: str
    final_total: float
    timestamp: datetime
