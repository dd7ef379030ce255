"""FastAPI application — trading simulator market backend."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tradesim.server.routes.admin import router as admin_router
from tradesim.server.routes.market import router as market_router
from tradesim.server.routes.orders import router as orders_router
from tradesim.server.state import TradeSimState
from tradesim.server.ws import websocket_endpoint


@asynccontextmanager
async def lifespan(app: FastAPI):
    state = TradeSimState()
    if state.engine is None:
        state.build_engine()
    if state.run_scheduler:
        state.scheduler.start()
    yield
    if state.scheduler is not None and state.scheduler.running:
        await state.scheduler.stop()


app = FastAPI(
    title="TradeSim Market Engine",
    version="1.0.0",
    description="Simulated stock exchange: prices, sessions, orders and settlement",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(market_router)
app.include_router(orders_router)
app.include_router(admin_router)

app.add_api_websocket_route("/ws", websocket_endpoint)


@app.get("/")
def root():
    return {"service": "TradeSim Market Engine", "version": "1.0.0"}
