"""Cliente Redis para cache y revocación de tokens de terminal"""
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
import os
import json
from typing import Optional, Any
import logging

logger = logging.getLogger(__name__)

redis_client: Optional[redis.Redis] = None
redis_pool: Optional[ConnectionPool] = None


async def init_redis():
    """Inicializar conexión a Redis con pool de conexiones"""
    global redis_client, redis_pool

    redis_url = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    redis_password = os.getenv("REDIS_PASSWORD")

    max_connections = int(os.getenv("REDIS_MAX_CONNECTIONS", "20"))

    redis_pool = ConnectionPool.from_url(
        redis_url,
        password=redis_password,
        max_connections=max_connections,
        decode_responses=True,
        socket_connect_timeout=5,
        socket_keepalive=True,
        retry_on_timeout=True,
        health_check_interval=30,  # Health check cada 30s
    )

    redis_client = redis.Redis(connection_pool=redis_pool)

    # Test connection
    try:
        await redis_client.ping()
        logger.info(f"Redis conectado exitosamente (pool max_connections={max_connections})")
    except Exception as e:
        logger.error(f"Error conectando a Redis: {e}")


async def get_redis() -> redis.Redis:
    """Obtener cliente Redis"""
    if redis_client is None:
        await init_redis()
    return redis_client


async def close_redis():
    """Cerrar conexión a Redis y pool"""
    global redis_client, redis_pool
    if redis_client:
        await redis_client.aclose()
        redis_client = None
    if redis_pool:
        await redis_pool.disconnect()
        redis_pool = None
    logger.info("Redis desconectado")


async def cache_get(key: str) -> Optional[Any]:
    """Obtener valor del cache"""
    redis_conn = await get_redis()
    value = await redis_conn.get(key)
    if value:
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return None


async def cache_set(key: str, value: Any, expire: int = 3600):
    """Guardar valor en cache"""
    redis_conn = await get_redis()
    if isinstance(value, (dict, list)):
        value = json.dumps(value)
    await redis_conn.setex(key, expire, value)
