import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import LOG_LEVEL, get_settings
from .database import create_db_and_tables
from .routers import admin, challenges, checkout, devices, items, preorders, webhooks

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Clauth")

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # 400 instead of FastAPI's default 422
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})

@app.get("/")
async def root():
    return {"message": "Hello World"}

app.include_router(challenges.router)
app.include_router(admin.router)
app.include_router(checkout.router)
app.include_router(webhooks.router)
app.include_router(items.router)
app.include_router(preorders.router)
app.include_router(devices.router)

@app.on_event("startup")
def on_startup():
    create_db_and_tables()
    logger.info("Database tables ready")
