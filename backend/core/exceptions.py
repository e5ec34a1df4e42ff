"""Application errors.

Every failure a route can report is an AppError subclass; main.py turns them
into `{"error": ..., "details": ...}` JSON bodies with the matching status.
"""
from typing import Any, Optional


class AppError(Exception):
    status_code: int = 500
    default_message: str = "サーバーエラーが発生しました"

    def __init__(self, message: Optional[str] = None, details: Any = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_body(self) -> dict:
        body: dict = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class Unauthenticated(AppError):
    status_code = 401
    default_message = "認証が必要です"


class NotFound(AppError):
    status_code = 404
    default_message = "商品が見つかりません"


class InvalidArgument(AppError):
    status_code = 400
    default_message = "入力データが正しくありません"


class InsufficientStock(AppError):
    """An OUT movement asked for more than the product holds."""

    status_code = 400

    def __init__(self, current_stock: int, requested_quantity: int):
        self.current_stock = current_stock
        self.requested_quantity = requested_quantity
        super().__init__(
            f"在庫数が不足しています。現在在庫: {current_stock}, 出庫予定: {requested_quantity}",
            details={
                "currentStock": current_stock,
                "requestedQuantity": requested_quantity,
            },
        )


class Conflict(AppError):
    status_code = 409
    default_message = "既に存在します"


class PersistenceError(AppError):
    status_code = 500
    default_message = "データの保存に失敗しました"
