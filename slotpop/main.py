from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from .errors import SlotPopError, InventoryError
from .routes.orders import router as orders_router
from .routes.admin import router as admin_router
from .utils.logging import logger

app = FastAPI(title="SlotPop Order Fulfillment",
              description="Slot-constrained order fulfillment with risk screening",
    version="0.1.0",
    docs_url="/docs",          # Swagger UI
    redoc_url="/redoc",        # ReDoc
    openapi_url="/openapi.json")

app.include_router(orders_router)
app.include_router(admin_router)

@app.exception_handler(SlotPopError)
def domain_error(request: Request, exc: SlotPopError):
    body = {"success": False, "message": exc.message}
    if isinstance(exc, InventoryError):
        body["errors"] = exc.errors
    return JSONResponse(status_code=exc.status_code, content=body)

@app.exception_handler(Exception)
def unexpected_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "message": "Internal server error"})

@app.get("/health")
def health():
    return {"ok": True}
