import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        default_budget_amount: int,
        default_currency: str,
        alert_threshold: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.default_budget_amount = default_budget_amount
        self.default_currency = default_currency
        self.alert_threshold = alert_threshold
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "Africa/Lagos")
    # 5 000 000 kobo, i.e. 50 000 NGN
    default_budget_amount = int(os.getenv("LEDGER_DEFAULT_BUDGET_AMOUNT", "5000000"))
    default_currency = os.getenv("LEDGER_DEFAULT_CURRENCY", "NGN").upper()
    alert_threshold = int(os.getenv("LEDGER_ALERT_THRESHOLD", "80"))
    log_level = os.getenv("LEDGER_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        default_budget_amount=default_budget_amount,
        default_currency=default_currency,
        alert_threshold=alert_threshold,
        log_level=log_level,
    )
