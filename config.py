import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        card_bill_marker: str,
        transfer_marker: str,
        role_match_max_distance: int,
        tag_card_in_description: bool,
        history_months: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.card_bill_marker = card_bill_marker
        self.transfer_marker = transfer_marker
        self.role_match_max_distance = role_match_max_distance
        self.tag_card_in_description = tag_card_in_description
        self.history_months = history_months


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "America/Sao_Paulo")
    card_bill_marker = os.getenv("LEDGER_CARD_BILL_MARKER", "cartão de crédito")
    transfer_marker = os.getenv(
        "LEDGER_TRANSFER_MARKER", "transferências entre contas"
    )
    role_match_max_distance = int(os.getenv("LEDGER_ROLE_MATCH_MAX_DISTANCE", "2"))
    tag_card_in_description = _env_flag("LEDGER_TAG_CARD_IN_DESCRIPTION")
    history_months = int(os.getenv("LEDGER_HISTORY_MONTHS", "12"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        card_bill_marker=card_bill_marker,
        transfer_marker=transfer_marker,
        role_match_max_distance=role_match_max_distance,
        tag_card_in_description=tag_card_in_description,
        history_months=history_months,
    )
