from fastapi import FastAPI, Request
from pydantic import BaseModel
from typing import List
import logging
import os

from interfaces.slack.core_slack_orchestration import create_slack_app
from runtime.config import load_config
from runtime.formatting import format_timestamp

# Load and validate configuration; missing Slack credentials are fatal
config = load_config()
config.validate()

# Configure logging
logging.basicConfig(level=getattr(logging, config.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

# Create a FastAPI instance
app = FastAPI(
    title="Daily Standup Bot",
    description="Slack webhook server for asynchronous daily standups",
    version="1.0.0"
)

# Get the Slack interface and its request handler
slack_interface = create_slack_app(config)
slack_handler = slack_interface.get_fastapi_handler()


# Response models
class ScheduleInfo(BaseModel):
    standup_time: str
    reference_timezone: str
    late_reminder_enabled: bool
    late_reminder_hours: int


class StandupStatusResponse(BaseModel):
    date: str
    submitted: List[str]
    pending: List[str]
    on_vacation: List[str]
    schedule: ScheduleInfo


# Startup/shutdown events
@app.on_event("startup")
async def startup_event():
    await slack_interface.start()
    logger.info(f"🚂 Standup bot started for channel {config.channel_id}")


@app.on_event("shutdown")
async def shutdown_event():
    await slack_interface.stop()
    logger.info("Standup bot stopped")


# Slack webhook endpoints
@app.post("/slack/events")
async def slack_events_endpoint(request: Request):
    """Endpoint for Slack Events API (direct messages)"""
    return await slack_handler.handle(request)


@app.post("/slack/commands")
async def slack_commands_endpoint(request: Request):
    """Endpoint for the /standup slash command"""
    return await slack_handler.handle(request)


@app.get("/api/standup/status", response_model=StandupStatusResponse)
async def standup_status():
    """Today's standup status in the reference timezone"""
    orchestrator = slack_interface.orchestrator
    today = orchestrator.clock.reference_today(orchestrator.now_fn())
    entries = await slack_interface.db.get_standup_status(today)
    settings = orchestrator.settings

    return StandupStatusResponse(
        date=today.isoformat(),
        submitted=[e.username for e in entries if e.has_submitted],
        pending=[e.username for e in entries if not e.has_submitted and not e.is_on_vacation],
        on_vacation=[e.username for e in entries if e.is_on_vacation],
        schedule=ScheduleInfo(
            standup_time=settings.time_label,
            reference_timezone=config.reference_timezone,
            late_reminder_enabled=settings.late_reminder_enabled,
            late_reminder_hours=settings.late_reminder_hours,
        ),
    )


# Add a health check
@app.get("/health")
async def health_check():
    """Health check with job state"""
    orchestrator = slack_interface.orchestrator
    trigger_job = orchestrator.trigger_job
    return {
        "status": "healthy",
        "trigger_job_active": bool(trigger_job and trigger_job.is_active),
        "next_trigger": (
            format_timestamp(trigger_job.next_run_at, config.reference_tz)
            if trigger_job and trigger_job.next_run_at else None
        ),
        "open_sessions": len(slack_interface.engine.registry),
        "cache": slack_interface.cache_service.get_cache_stats(),
    }


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint with service information"""
    return {
        "service": "Daily Standup Bot",
        "slack_endpoints": ["/slack/events", "/slack/commands"],
        "api_endpoints": ["/api/standup/status"],
        "health": "/health",
        "docs": "/docs"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
