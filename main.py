import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError
from pymongo.database import Database
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
import database
from database import create_document, get_db
from routers import (
    admin, applications, auth, favorites, inquiries, listings, messages, notifications, reviews, stats, users,
)
from schemas import User as UserSchema
from security import hash_password

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)


def create_indexes():
    if database.db is None:
        logger.warning("DATABASE_URL not set, skipping index creation")
        return
    try:
        database.ensure_indexes(database.db)
    except PyMongoError as e:
        logger.error("Could not create indexes: %s", e)


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_indexes()
    yield


# App and CORS
app = FastAPI(title="Basha Lagbe API", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

os.makedirs(config.UPLOAD_DIR, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=config.UPLOAD_DIR), name="uploads")

for module in (auth, users, listings, reviews, inquiries, applications, messages, notifications, favorites,
               admin, stats):
    app.include_router(module.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    elapsed = (time.perf_counter() - start) * 1000
    logger.info("%s %s -> %d (%.1f ms)", request.method, request.url.path, response.status_code, elapsed)
    return response


# Error handlers

def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code,
                        content={"success": False, "statusCode": status_code, "message": message})


def _first_error(errors) -> str:
    if not errors:
        return "Invalid request"
    err = errors[0]
    field = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
    return f"{field}: {err.get('msg')}" if field else err.get("msg", "Invalid request")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return error_response(400, _first_error(exc.errors()))


@app.exception_handler(ValidationError)
async def model_validation_handler(request: Request, exc: ValidationError):
    return error_response(400, _first_error(exc.errors()))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "Internal Server Error")


# Bootstrap route for first deploy
@app.post("/api/init/bootstrap")
def bootstrap_admin(db: Database = Depends(get_db)):
    """Create the first admin from ADMIN_EMAIL / ADMIN_PASSWORD if no admin exists yet."""
    if db["user"].count_documents({"role": "admin"}) > 0:
        raise HTTPException(status_code=400, detail="Admin already exists")
    if not config.ADMIN_EMAIL or not config.ADMIN_PASSWORD:
        raise HTTPException(status_code=400, detail="ADMIN_EMAIL and ADMIN_PASSWORD must be configured")

    existing = db["user"].find_one({"email": config.ADMIN_EMAIL})
    if existing:
        db["user"].update_one({"_id": existing["_id"]}, {"$set": {"role": "admin", "isEmailVerified": True}})
    else:
        create_document(db, "user", UserSchema(
            fullName="Administrator",
            email=config.ADMIN_EMAIL,
            password=hash_password(config.ADMIN_PASSWORD),
            role="admin",
            isEmailVerified=True,
        ))
    logger.info("Bootstrapped admin account %s", config.ADMIN_EMAIL)
    return {"success": True, "message": "Admin created", "email": config.ADMIN_EMAIL}


# Utility endpoints
@app.get("/")
def root():
    return {"message": "Basha Lagbe API running"}


@app.get("/api/test")
def test_database(db: Database = Depends(get_db)):
    try:
        return {"backend": "ok", "database": "ok", "collections": db.list_collection_names()}
    except PyMongoError as e:
        return {"backend": "ok", "database": f"error: {e}"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")), reload=False)
