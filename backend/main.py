from fastapi import FastAPI, Request
import uvicorn
import structlog
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from db.database import create_db_and_tables
from core.errors import StockLedgerError
from core.logging import add_context, clear_context, configure_logging
from routers.catalog import router as catalog_router
from routers.inventory import router as inventory_router
from routers.orders import router as orders_router
from contextlib import asynccontextmanager

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await create_db_and_tables()
    logger.info("startup_complete")
    yield


app = FastAPI(
    title="Stock Ledger API",
    description="Inventory movement ledger and purchase/sales order fulfillment",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def bind_request_context(request: Request, call_next):
    clear_context()
    add_context(method=request.method, path=request.url.path)
    return await call_next(request)


@app.exception_handler(StockLedgerError)
async def stock_ledger_error_handler(request: Request, exc: StockLedgerError):
    logger.info("request_rejected", code=exc.code, status_code=exc.status_code, detail=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/health", tags=["health"])
async def health():
    return {"status": "ok"}


# Reference data
app.include_router(catalog_router, prefix="/catalog", tags=["catalog"])

# Ledger, stock, kardex
app.include_router(inventory_router, prefix="/inventory", tags=["inventory"])

# Purchase / sales orders
app.include_router(orders_router, prefix="/orders", tags=["orders"])

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
