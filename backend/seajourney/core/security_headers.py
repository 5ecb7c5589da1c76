"""セキュリティヘッダーミドルウェア"""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    APIレスポンスにセキュリティ関連ヘッダーを付与する。
    署名リンクはクエリにトークンを含むため Referer で外部に漏らさない。
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Referrer-Policy"] = "no-referrer"
        # JSON APIのみ。キャッシュにトークン付きレスポンスを残さない
        response.headers["Cache-Control"] = "no-store"

        return response
