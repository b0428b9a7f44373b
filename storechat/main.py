# storechat/main.py
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.engine import Engine

# Load .env before settings read the environment
load_dotenv()

from .config import OrderingConfigStore, Settings
from .db import init_db, make_engine, make_session_factory
from .fallback import Fallback, LLMFallback, NullFallback
from .ordering.brain import ConversationEngine, InboundMessage
from .ordering.cart import CartStore
from .ordering.catalog import CatalogStore
from .ordering.index import CatalogIndex
from .ordering.orders import OrderSink
from .ordering.session import SessionStore
from .ordering.workflow import CartWorkflow
from .ratelimit import RateLimiter

settings = Settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# -------------------
# Wiring
# -------------------
def build_conversation(
    cfg: Settings,
    db_engine: Optional[Engine] = None,
    fallback: Optional[Fallback] = None,
) -> ConversationEngine:
    db_engine = db_engine or make_engine(cfg.database_url)
    init_db(db_engine)
    orders = OrderSink(make_session_factory(db_engine), prefix=cfg.order_id_prefix)

    catalog = CatalogStore(cfg.catalog_path, ttl_seconds=cfg.catalog_ttl_seconds)
    config_store = OrderingConfigStore(cfg.ordering_path, ttl_seconds=cfg.catalog_ttl_seconds)

    sessions = SessionStore(expiry_seconds=lambda: config_store.current().session.expiry_minutes * 60)
    carts = CartStore(expiry_seconds=lambda: config_store.current().cart.expiry_minutes * 60)
    workflow = CartWorkflow(
        carts,
        sessions,
        config_store,
        orders,
        persistence_timeout=cfg.persistence_timeout_seconds,
        currency_symbol=cfg.currency_symbol,
    )

    if fallback is None:
        if cfg.llm_enabled and cfg.openai_api_key:
            fallback = LLMFallback(
                api_key=cfg.openai_api_key,
                model=cfg.llm_model,
                timeout_seconds=cfg.llm_timeout_seconds,
                currency_symbol=cfg.currency_symbol,
            )
        else:
            fallback = NullFallback()

    return ConversationEngine(
        index=CatalogIndex(catalog),
        workflow=workflow,
        config_store=config_store,
        orders=orders,
        fallback=fallback,
        rate_limiter=RateLimiter(
            max_messages=cfg.rate_limit_max_messages,
            window_seconds=cfg.rate_limit_window_seconds,
            block_seconds=cfg.rate_limit_block_seconds,
        ),
        commercial_filter=cfg.commercial_filter,
        fallback_timeout=cfg.llm_timeout_seconds,
        lookup_timeout=cfg.persistence_timeout_seconds,
    )


async def _sweeper(engine: ConversationEngine, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            engine.sweep()
        except Exception:
            logger.exception("Sweep failed")


# -------------------
# Schemas
# -------------------
class MessageOut(BaseModel):
    reply: Optional[str] = None
    ignored: bool = False


# -------------------
# App
# -------------------
def create_app(cfg: Optional[Settings] = None, engine: Optional[ConversationEngine] = None) -> FastAPI:
    cfg = cfg or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.engine is None:
            app.state.engine = build_conversation(cfg)
        sweeper = asyncio.create_task(_sweeper(app.state.engine, cfg.sweep_interval_seconds))
        logger.info("Conversation engine ready: %s", app.state.engine.index.current.stats())
        try:
            yield
        finally:
            sweeper.cancel()
            with suppress(asyncio.CancelledError):
                await sweeper

    app = FastAPI(
        title="Storechat Order Engine",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )
    app.state.engine = engine

    def _engine(request: Request) -> ConversationEngine:
        current = request.app.state.engine
        if current is None:
            raise HTTPException(status_code=503, detail="Engine not ready")
        return current

    # -------------------
    # Health
    # -------------------
    @app.get("/")
    def root(request: Request):
        current = request.app.state.engine
        return {
            "ok": True,
            "service": "storechat",
            "catalog": current.index.current.stats() if current else None,
        }

    # -------------------
    # Inbound messages (transport webhook)
    # -------------------
    @app.post("/messages", response_model=MessageOut)
    async def messages(payload: InboundMessage, request: Request):
        reply = await _engine(request).handle(payload)
        return MessageOut(reply=reply, ignored=reply is None)

    # -------------------
    # Catalog change signal (from the catalog writer)
    # -------------------
    @app.post("/catalog/invalidate")
    def invalidate_catalog(request: Request):
        current = _engine(request)
        current.index.store.invalidate()
        return {"ok": True, "catalog": current.index.current.stats()}

    return app


app = create_app()
