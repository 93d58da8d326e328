# backend/main.py
import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from config import settings
from database import init_db
from utils.errors import InternalFailure

# Import routerów
from routes.auth import router as auth_router
from routes.products import router as products_router
from routes.cart import router as cart_router
from routes.payments import router as payments_router

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Inicjalizacja
init_db()

app = FastAPI(title="Storefront API", version="1.0.0")

origins = ["http://localhost:5173", "http://127.0.0.1:5173", settings.FRONTEND_URL]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Persistence errors never leak details to the client
@app.exception_handler(SQLAlchemyError)
async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Unhandled database error on %s %s", request.method, request.url.path)
    error = InternalFailure()
    return JSONResponse(status_code=error.status_code, content={"detail": error.detail})

# Rejestracja routerów
app.include_router(auth_router)
app.include_router(products_router)
app.include_router(cart_router)
app.include_router(payments_router)

@app.get("/")
def read_root():
    return {"message": "Storefront API is running"}
