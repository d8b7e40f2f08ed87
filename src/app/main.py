"""Точка входа в приложение secretary-service."""
from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from app.config import get_settings
from app.logging_config import LOG_LEVEL, get_logger, init_logging
from app.observability import metrics
from api import router as api_router
from chat.bootstrap import create_chat_runtime

settings = get_settings()
logger = get_logger(__name__)


app = FastAPI(title=settings.app_name)


@app.on_event("startup")
async def on_startup() -> None:
    """Действия при запуске приложения."""

    init_logging()
    app.state.is_ready = False
    app.state.init_error = None
    app.state.chat_runtime = None

    logger.info("[Startup] Сборка чат-рантайма")
    try:
        runtime = await create_chat_runtime(settings)
    except Exception as exc:  # pragma: no cover - ранняя инициализация
        app.state.init_error = f"Ошибка создания чат-рантайма: {exc}"
        logger.exception("[Startup] Не удалось собрать чат-рантайм")
        return

    try:
        _validate_external_credentials(app, runtime)
    except RuntimeError as exc:
        app.state.init_error = str(exc)
        logger.exception("[Startup] Проверка учётных данных завершилась с ошибкой")
        await runtime.aclose()
        return

    app.state.chat_runtime = runtime
    app.state.is_ready = True
    logger.info(
        "Сервис %s запущен на %s:%s и готов к работе", settings.app_name, settings.host, settings.port
    )


@app.on_event("shutdown")
async def on_shutdown() -> None:
    """Действия при остановке приложения."""

    logger.info("Сервис %s останавливается", settings.app_name)
    runtime = getattr(app.state, "chat_runtime", None)
    if runtime is not None:
        await runtime.aclose()


@app.get("/health", summary="Проверка доступности сервиса")
async def healthcheck() -> dict[str, str]:
    """Простой health-endpoint."""

    is_ready = getattr(app.state, "is_ready", False)
    error = getattr(app.state, "init_error", None)
    status = "ok" if is_ready else ("failed" if error else "initializing")

    payload = {"status": status, "service": settings.app_name}
    if error:
        payload["error"] = error

    if not is_ready:
        return JSONResponse(status_code=503, content=payload)

    return payload


@app.get("/metrics", summary="Счётчики рантайма")
async def metrics_snapshot() -> dict[str, int]:
    return metrics.snapshot().values


app.include_router(api_router, prefix=settings.api_prefix)


def _validate_external_credentials(_: FastAPI, runtime) -> None:
    llm_client = getattr(runtime, "llm_client", None)
    if not llm_client:
        logger.warning("[Startup] LLM клиент не сконфигурирован")
        return

    logger.debug("[Startup] Проверка LLM credentials")
    try:
        llm_client._ensure_credentials()  # type: ignore[attr-defined]
    except Exception as exc:
        raise RuntimeError("Учётные данные LLM не заданы или недоступны") from exc

    if not llm_client.has_credentials and getattr(llm_client, "allow_fallback", False):
        logger.warning(
            "[Startup] Учётные данные LLM отсутствуют, будет использован fallback режим"
        )


def main() -> None:
    """Запустить backend-сервис."""

    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=logging.getLevelName(LOG_LEVEL).lower(),
    )


if __name__ == "__main__":
    main()
