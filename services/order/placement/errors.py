"""
Order Service — エラー定義

すべての業務エラーは OrderError のサブクラス。
kind は機械可読な種別、message は人間向けのメッセージ。
to_dict の結果を冪等性レコードに記録し、再送時にそのまま返す。
"""


class OrderError(Exception):
    """注文処理エラーの基底クラス"""

    kind = "OrderError"
    status_code = 500

    def __init__(self, message: str, **details) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, **self.details}


class InvalidRequest(OrderError):
    """リクエストが不正（顧客情報なし、空カートなど）"""

    kind = "InvalidRequest"
    status_code = 400


class Locked(OrderError):
    """同じカートの注文が処理中"""

    kind = "Locked"
    status_code = 423


class DuplicateInProgress(OrderError):
    """同じ冪等キーのリクエストが処理中"""

    kind = "DuplicateInProgress"
    status_code = 409


class DuplicateCompleted(OrderError):
    """
    同じ冪等キーのリクエストは完了済み。

    HTTP には返さない。オーケストレーターが捕捉し、snapshot (作成時の注文)
    をそのまま再送の応答にする。snapshot がない古いレコードは order_id で読み直す。
    """

    kind = "DuplicateCompleted"

    def __init__(
        self, message: str, order_id: str, snapshot: dict | None = None, **details
    ) -> None:
        super().__init__(message, order_id=order_id, **details)
        self.order_id = order_id
        self.snapshot = snapshot


class DuplicateFailed(OrderError):
    """同じ冪等キーのリクエストは失敗済み。original に記録済みのエラーを持つ。"""

    kind = "DuplicateFailed"
    status_code = 409

    def __init__(self, message: str, original: dict, **details) -> None:
        super().__init__(message, original=original, **details)
        self.original = original


class InsufficientInventory(OrderError):
    kind = "InsufficientInventory"
    status_code = 409

    def __init__(
        self, message: str, product_id: str, requested: int, available: int, **details
    ) -> None:
        super().__init__(
            message,
            product_id=product_id,
            requested=requested,
            available=available,
            **details,
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class NotFound(OrderError):
    kind = "NotFound"
    status_code = 404


class StoreUnavailable(OrderError):
    """DB / Redis に到達できない（一時的な障害）"""

    kind = "StoreUnavailable"
    status_code = 503
