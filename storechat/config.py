# storechat/config.py
from __future__ import annotations

import json
import logging
import os
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_DATA_DIR = PROJECT_ROOT / "data"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() not in {"0", "false", "no", "off"}


# -------------------
# Process settings (env-driven)
# -------------------
class Settings(BaseModel):
    data_dir: Path = Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR)))
    catalog_file: str = os.getenv("CATALOG_FILE", "catalog.json")
    ordering_file: str = os.getenv("ORDERING_FILE", "ordering.json")
    catalog_ttl_seconds: float = float(os.getenv("CATALOG_TTL_SECONDS", "60"))

    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./storechat.db")
    order_id_prefix: str = os.getenv("ORDER_ID_PREFIX", "PED")
    persistence_timeout_seconds: float = float(os.getenv("PERSISTENCE_TIMEOUT_SECONDS", "5"))

    llm_enabled: bool = _env_bool("LLM_ENABLED", "1")
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "").strip()
    llm_model: str = os.getenv("LLM_MODEL", "gpt-4o-mini")
    llm_timeout_seconds: float = float(os.getenv("LLM_TIMEOUT_SECONDS", "8"))

    commercial_filter: bool = _env_bool("COMMERCIAL_FILTER", "1")
    rate_limit_max_messages: int = int(os.getenv("RATE_LIMIT_MAX_MESSAGES", "10"))
    rate_limit_window_seconds: float = float(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))
    rate_limit_block_seconds: float = float(os.getenv("RATE_LIMIT_BLOCK_SECONDS", "300"))

    sweep_interval_seconds: float = float(os.getenv("SWEEP_INTERVAL_SECONDS", "60"))
    currency_symbol: str = os.getenv("CURRENCY_SYMBOL", "$")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    @property
    def catalog_path(self) -> Path:
        return self.data_dir / self.catalog_file

    @property
    def ordering_path(self) -> Path:
        return self.data_dir / self.ordering_file


# -------------------
# Ordering config (business-editable JSON, read-only here)
# -------------------
class BusinessInfo(BaseModel):
    name: str = "Nuestra tienda"
    address: str = ""
    hours: str = ""
    payment_methods: str = ""
    whatsapp: str = ""
    phone: str = ""


class DiscountTier(BaseModel):
    minimum: float
    percent: float
    label: Optional[str] = None


class DiscountConfig(BaseModel):
    enabled: bool = False
    tiers: List[DiscountTier] = Field(default_factory=list)


class DeliveryConfig(BaseModel):
    enabled: bool = False
    fee: float = 0
    free_from: Optional[float] = None


class CartConfig(BaseModel):
    expiry_minutes: float = 15


class SessionConfig(BaseModel):
    expiry_minutes: float = 10


class OrderingConfig(BaseModel):
    business: BusinessInfo = Field(default_factory=BusinessInfo)
    # owner switch: when off, the engine stays silent
    auto_replies_enabled: bool = True
    ignored_contacts: List[str] = Field(default_factory=list)
    discounts: DiscountConfig = Field(default_factory=DiscountConfig)
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    cart: CartConfig = Field(default_factory=CartConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)


class OrderingConfigStore:
    """
    Read-only view of the ordering config file with a TTL reload window.
    Without a path it just serves whatever was passed in (or replaced).
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        initial: Optional[OrderingConfig] = None,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._path = path
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._config = initial or OrderingConfig()
        self._loaded_at: Optional[float] = None if path else self._clock()

    def current(self) -> OrderingConfig:
        with self._lock:
            if self._path is not None and (
                self._loaded_at is None or self._clock() - self._loaded_at >= self._ttl
            ):
                self._loaded_at = self._clock()
                loaded = self._read()
                if loaded is not None:
                    self._config = loaded
            return self._config

    def replace(self, config: OrderingConfig) -> None:
        with self._lock:
            self._config = config
            self._loaded_at = self._clock()

    def _read(self) -> Optional[OrderingConfig]:
        if self._path is None:
            return None
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            return OrderingConfig.model_validate(raw)
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            logger.error("Ordering config read failed (%s): %s", self._path, exc)
            return None
