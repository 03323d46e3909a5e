import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from finscope.api.routes import router
from finscope.config import get_settings
from finscope.deps import extractor

# Configure loguru
logger.remove()
logger.add(sys.stderr, level="INFO", format="{time:HH:mm:ss} | {level:<7} | {message}")

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the Telegram bot alongside the API when a token is configured."""
    logger.info("Field extraction: {}", "LLM + rules" if extractor else "rules only")

    bot_app = None
    if settings.telegram_bot_token:
        from finscope.bot.handler import build_bot_app

        bot_app = build_bot_app()
        await bot_app.initialize()
        await bot_app.start()
        await bot_app.updater.start_polling(drop_pending_updates=True)
        logger.info("Telegram bot started (polling)")
    else:
        logger.warning("No TELEGRAM_BOT_TOKEN configured, serving the API only")

    yield

    if bot_app:
        await bot_app.updater.stop()
        await bot_app.stop()
        await bot_app.shutdown()
        logger.info("Telegram bot stopped")


app = FastAPI(title="FinScope", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    logger.info("{} {}", request.method, request.url.path)
    response: Response = await call_next(request)
    logger.info("→ {}", response.status_code)
    return response


@app.get("/health")
def health():
    return {"status": "ok", "llm_extraction": extractor is not None}


app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
