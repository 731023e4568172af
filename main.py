import os
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

import config
from exceptions import register_exception_handlers
from logging_config import bind_request_context, clear_request_context, get_logger, setup_logging
from routers import all_routers

setup_logging()
log = get_logger(__name__)

# App instance
app = FastAPI(title="Dance Studio Concessions API")

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

for router in all_routers:
    app.include_router(router)


# Request id, method and path on every log line
@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    clear_request_context()
    bind_request_context(
        request_id=request.headers.get("X-Request-ID") or uuid.uuid4().hex,
        method=request.method,
        path=request.url.path,
    )
    return await call_next(request)


# 404 Fallback
@app.exception_handler(404)
async def not_found_handler(request: Request, exc):
    return JSONResponse(status_code=404, content={"error": "Route not found"})


if __name__ == "__main__":
    port = int(os.getenv("PORT", 10000))
    uvicorn.run("main:app", host="0.0.0.0", port=port, reload=True)
