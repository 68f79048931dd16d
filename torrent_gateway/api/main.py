import asyncio

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from torrent_gateway.errors import GatewayError, InternalError, ValidationError
from torrent_gateway.gateway import ClientGateway, get_gateway
from torrent_gateway.logger import logger
from torrent_gateway.polling import get_catalog

from .routes import settings, torrents

app = FastAPI(
    title="Torrent Gateway API",
    description="One normalized API over rTorrent, Transmission or qBittorrent",
    version="1.0.0"
)


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    error = ValidationError("; ".join(
        f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()
    ))
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    error = InternalError("Internal server error")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


# Include routers
app.include_router(torrents.router)
app.include_router(settings.router)


@app.get("/health")
async def health(gateway: ClientGateway = Depends(get_gateway)):
    """Health check, including whether the daemon answers."""
    connected = await gateway.check_connection()
    return {"status": "ok", "client": gateway.client.name, "connected": connected}


@app.on_event("startup")
async def startup_event():
    """Start the catalog polling loop."""
    logger.info("Starting Torrent Gateway API")
    catalog = get_catalog()
    app.state.catalog_task = asyncio.ensure_future(catalog.run())


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Stopping Torrent Gateway API")
    get_catalog().stop()
    task = getattr(app.state, "catalog_task", None)
    if task is not None:
        task.cancel()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8144)
