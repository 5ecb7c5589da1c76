from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """アプリケーション設定"""

    # データベース
    DATABASE_URL: str = "mysql+pymysql://seajourney:seajourney@db:3306/seajourney?charset=utf8mb4"

    # Stripe
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    # 課金プロダクトファミリー (crew / vessel)
    STRIPE_CREW_PRODUCT_ID: str = ""
    STRIPE_VESSEL_PRODUCT_ID: str = ""

    # Resend
    RESEND_API_KEY: str = ""
    RESEND_FROM_EMAIL: str = "SeaJourney <team@seajourney.co.uk>"

    # サービス設定
    SITE_URL: str = "http://localhost:3000"
    SITE_NAME: str = "SeaJourney"
    ALLOWED_ORIGINS: str = "http://localhost:3000"

    # キャプテン署名リンク (公開エンドポイント) のレート制限
    SIGNOFF_RATE_LIMIT: str = "20/minute"

    # スナップショット作成時のtestimonial_code待ち合わせ
    SNAPSHOT_MAX_ATTEMPTS: int = 10
    SNAPSHOT_BACKOFF_SECONDS: float = 0.2

    # 1隻あたりの承認済みキャプテン上限 (交代制)
    MAX_CAPTAINS_PER_VESSEL: int = 2

    # 環境
    ENV: str = "development"
    DEBUG: bool = False

    @property
    def allowed_origins_list(self) -> list[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
