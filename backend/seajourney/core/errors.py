"""ドメイン例外: サービス層で送出し、main.py のハンドラで JSON レスポンスに変換"""
from typing import Optional


class AppError(Exception):
    """HTTPステータス付きのアプリケーション例外"""

    status_code = 500

    def __init__(self, message: str, extra: Optional[dict] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.extra = extra or {}
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"success": False, "error": self.message, **self.extra}


class BadRequestError(AppError):
    status_code = 400


class ForbiddenError(AppError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    status_code = 409


class GoneError(AppError):
    status_code = 410


class ConfigurationError(AppError):
    """サーバー側設定の不足"""
    status_code = 500


class PaymentProviderError(AppError):
    """Stripe側の例外 (自動リトライしない)"""
    status_code = 500
