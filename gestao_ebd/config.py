import os


def _bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return float(value.replace(",", "."))
    except ValueError:
        return default


class Config:
    BASE_DIR = os.path.dirname(os.path.dirname(__file__))
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_DIR = None if DATABASE_URL else os.path.join(BASE_DIR, "database")
    DB_PATH = DATABASE_URL or os.path.join(DATABASE_DIR, "gestao_ebd.db")
    DB_AUTO_INIT = _bool_env("DB_AUTO_INIT", False)

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-gestao-ebd")
    LOG_JSON = _bool_env("LOG_JSON", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    REMOTE_MODE = os.environ.get("REMOTE_MODE", "mock")
    REMOTE_BASE_URL = os.environ.get("REMOTE_BASE_URL")
    REMOTE_TOKEN = os.environ.get("REMOTE_TOKEN")
    REMOTE_API_KEY = os.environ.get("REMOTE_API_KEY")
    REMOTE_FUNCTION_PATHS = os.environ.get(
        "REMOTE_FUNCTION_PATHS",
        "create_order=bling-create-order,payment_order=ebd-shopify-order-create,"
        "quote_shipping=calculate-shipping,send_message=send-whatsapp-message",
    )
    REMOTE_TIMEOUT_SECONDS = _int_env("REMOTE_TIMEOUT_SECONDS", 20)
    REMOTE_VERIFY_SSL = _bool_env("REMOTE_VERIFY_SSL", True)

    PUBLIC_BASE_URL = os.environ.get("PUBLIC_BASE_URL", "https://gestaoebd.com.br")

    FREE_SHIPPING_THRESHOLD = _float_env("FREE_SHIPPING_THRESHOLD", 199.90)
    FALLBACK_PAC_COST = _float_env("FALLBACK_PAC_COST", 15.0)
    FALLBACK_PAC_DAYS = _int_env("FALLBACK_PAC_DAYS", 8)
    FALLBACK_SEDEX_COST = _float_env("FALLBACK_SEDEX_COST", 25.0)
    FALLBACK_SEDEX_DAYS = _int_env("FALLBACK_SEDEX_DAYS", 3)
    PICKUP_ADDRESS = os.environ.get(
        "PICKUP_ADDRESS",
        "Estrada do Guerengue, 1851 - Taquara, Rio de Janeiro - RJ",
    )
    PICKUP_HOURS = os.environ.get("PICKUP_HOURS", "Segunda a Sexta: 9h as 18h")

    DEFAULT_COMMISSION_PERCENT = _float_env("DEFAULT_COMMISSION_PERCENT", 5.0)
    INVOICED_DEFAULT_COMMISSION_PERCENT = _float_env("INVOICED_DEFAULT_COMMISSION_PERCENT", 1.5)

    def __init__(self):
        env = os.environ.get("FLASK_ENV", "development").lower()
        if env == "production" and not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL nao definida para ambiente de producao.")
        if env == "production" and self.SECRET_KEY == "dev-secret-gestao-ebd":
            raise RuntimeError("SECRET_KEY insegura para producao.")
