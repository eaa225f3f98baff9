"""API Gateway principal - Punto de entrada de la aplicación"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
import os
import logging
from contextlib import asynccontextmanager

from shared.database.connection import init_db, close_db
from shared.cache.redis_client import init_redis, close_redis
from shared.exceptions import GateError
from shared.utils.rate_limiter import limiter, rate_limit_exceeded_handler

# Configurar logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle events de la aplicación"""
    # Startup
    logger.info("Iniciando aplicación...")
    await init_db()
    await init_redis()
    logger.info("Aplicación iniciada")
    yield
    # Shutdown
    logger.info("Cerrando aplicación...")
    await close_db()
    await close_redis()
    logger.info("Aplicación cerrada")


# Crear aplicación FastAPI
app = FastAPI(
    title="Gatekeeper API",
    description="Control de acceso de escáneres y canje de tickets para eventos",
    version="1.0.0",
    lifespan=lifespan
)

default_origins = "http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000,http://127.0.0.1:5173"
cors_origins_str = os.getenv("CORS_ORIGINS", default_origins)

# En desarrollo, permitir todos los orígenes para facilitar testing
if os.getenv("APP_ENV", "development") == "development":
    logger.info("Modo desarrollo: CORS configurado para permitir todos los orígenes")
    allow_origins = ["*"]
    allow_credentials = False  # No se puede usar credentials con allow_origins=["*"]
else:
    cors_origins = [origin.strip() for origin in cors_origins_str.split(",") if origin.strip()]
    allow_origins = cors_origins
    allow_credentials = True
    logger.info(f"CORS origins configurados: {allow_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=allow_credentials,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    max_age=3600,  # Cache preflight requests por 1 hora
)

# Configurar rate limiting DESPUÉS de CORS
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


@app.exception_handler(GateError)
async def gate_error_handler(request: Request, exc: GateError):
    """Errores de credenciales/sesión como JSON {error, detail}"""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error_code, "detail": exc.detail},
    )


# Incluir routers de cada servicio
from services.gate_access.routes.gate import router as gate_router
from services.ticket_validation.routes.validation import router as validation_router

app.include_router(gate_router, prefix="/api/v1/gate", tags=["gate"])
app.include_router(validation_router, prefix="/api/v1/tickets", tags=["tickets"])


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {"status": "ok", "service": "gatekeeper-api"}


@app.get("/ready")
async def ready():
    """Ready check endpoint - verifica conexiones"""
    try:
        from sqlalchemy import text
        from shared.database import connection
        async with connection.async_session_maker() as session:
            await session.execute(text("SELECT 1"))

        from shared.cache.redis_client import get_redis
        redis = await get_redis()
        await redis.ping()

        return {"status": "ready", "database": "connected", "redis": "connected"}
    except Exception as e:
        logger.error(f"Ready check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "not ready", "error": str(e)})


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=os.getenv("APP_DEBUG", "False").lower() == "true"
    )
