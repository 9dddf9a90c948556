from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from support_chat.config import settings
from support_chat.logging_config import setup_logging
from support_chat.routers import agent, availability, conversations, escalation, messages, upload

setup_logging(settings.log_level)

app = FastAPI(
    title="Support Chat API",
    description="Customer support chat routing between the AI assistant and human agents",
    version="0.1.0",
    debug=settings.debug,
)

cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(conversations.router)
app.include_router(messages.router)
app.include_router(availability.router)
app.include_router(escalation.router)
app.include_router(upload.router)
app.include_router(agent.router)


@app.get("/health")
async def health():
    return {"status": "ok"}
