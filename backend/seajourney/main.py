from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from seajourney.core.config import settings
from seajourney.core.errors import AppError
from seajourney.core.logging import setup_logging, get_logger
from seajourney.core.security_headers import SecurityHeadersMiddleware
from seajourney.core.rate_limit import limiter, rate_limit_exceeded_handler
from seajourney.routers import health, billing, captain_signoff, testimonials, vessel_claims, webhooks_stripe

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """アプリケーションライフサイクル管理"""
    setup_logging(debug=settings.DEBUG)
    logger.info("アプリケーション起動")
    yield
    logger.info("アプリケーション終了")


app = FastAPI(
    title=settings.SITE_NAME,
    lifespan=lifespan,
    docs_url="/api/docs" if settings.DEBUG else None,
    redoc_url="/api/redoc" if settings.DEBUG else None,
)

# レート制限設定
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} → {exc.status_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def _describe_error(err: dict) -> str:
    loc = [str(part) for part in err.get("loc", []) if part not in ("body", "query")]
    field = ".".join(loc)
    return f"{field}: {err.get('msg', 'invalid value')}" if field else err.get("msg", "invalid value")


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    # 入力不備はクライアントエラーとして 400 で返す
    messages = [_describe_error(e) for e in exc.errors()]
    return JSONResponse(status_code=400, content={"success": False, "error": "; ".join(messages)})


# ミドルウェア (登録順序: 後に登録したものが先に実行される)
app.add_middleware(SecurityHeadersMiddleware)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ルーター登録
app.include_router(health.router)
app.include_router(billing.router)
app.include_router(captain_signoff.router)
app.include_router(testimonials.router)
app.include_router(vessel_claims.router)
app.include_router(webhooks_stripe.router)
