"""
FastAPI service receiving saved query change callbacks from frontend instances.

Callbacks return as soon as the cache has been updated; subscriber
notifications are sent in the background. Test notifications are sent
synchronously so the operator sees delivery problems immediately.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, ConfigDict, Field, model_validator

from .config import Settings
from .errors import DeliveryError, RecipientResolutionError, SavedQueryNotFound
from .models import SavedQueryConfig, SavedQueryIdentity, Subject
from .observability import setup_logging
from .service import QueryRunnerService

logger = logging.getLogger(__name__)


# Pydantic models (wire format shared with the frontend)
class SubjectArgs(BaseModel):
    """Owner of a saved query; exactly one of Site, Org or User."""
    site: bool = Field(False, alias="Site")
    org: Optional[int] = Field(None, alias="Org")
    user: Optional[int] = Field(None, alias="User")

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def exactly_one_owner(self):
        owners = sum([self.site, self.org is not None, self.user is not None])
        if owners != 1:
            raise ValueError("subject must name exactly one of Site, Org or User")
        return self

    def to_subject(self) -> Subject:
        return Subject(site=self.site, org_id=self.org, user_id=self.user)


class SavedQueryArgs(BaseModel):
    """One saved query from a subject's settings; unknown fields are kept."""
    key: str = Field(min_length=1)
    query: str
    description: str = ""
    show_on_homepage: bool = Field(False, alias="showOnHomepage")
    notify: bool = False
    notify_slack: bool = Field(False, alias="notifySlack")
    user_id: Optional[int] = Field(None, alias="userID")
    org_id: Optional[int] = Field(None, alias="orgID")

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_config(self) -> SavedQueryConfig:
        return SavedQueryConfig.from_wire(self.model_dump(by_alias=True))


class SavedQueriesConfigArgs(BaseModel):
    saved_queries: List[SavedQueryArgs] = Field(default_factory=list, alias="SavedQueries")

    model_config = ConfigDict(populate_by_name=True)


class SubjectAndConfigArgs(BaseModel):
    subject: SubjectArgs = Field(alias="Subject")
    config: SavedQueriesConfigArgs = Field(alias="Config")

    model_config = ConfigDict(populate_by_name=True)


class SavedQuerySpecArgs(BaseModel):
    subject: SubjectArgs = Field(alias="Subject")
    key: str = Field(alias="Key", min_length=1)

    model_config = ConfigDict(populate_by_name=True)

    def to_identity(self) -> SavedQueryIdentity:
        return SavedQueryIdentity(subject=self.subject.to_subject(), key=self.key)


class SavedQueryWasCreatedOrUpdatedArgs(BaseModel):
    subject_and_config: SubjectAndConfigArgs = Field(alias="SubjectAndConfig")
    disable_subscription_notifications: bool = Field(False, alias="DisableSubscriptionNotifications")

    model_config = ConfigDict(populate_by_name=True)


class SavedQueryWasDeletedArgs(BaseModel):
    spec: SavedQuerySpecArgs = Field(alias="Spec")
    disable_subscription_notifications: bool = Field(False, alias="DisableSubscriptionNotifications")

    model_config = ConfigDict(populate_by_name=True)


class SendTestNotificationArgs(BaseModel):
    spec: SavedQuerySpecArgs = Field(alias="Spec")

    model_config = ConfigDict(populate_by_name=True)


# Global service instance
_service: Optional[QueryRunnerService] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan."""
    global _service

    # Startup: readiness is delayed until the initial list has been fetched
    settings = Settings()
    setup_logging(settings)
    _service = QueryRunnerService(settings)
    await _service.initialize()
    logger.info("Query runner API started")

    yield

    # Shutdown
    if _service:
        await _service.close()
        _service = None
    logger.info("Query runner API stopped")


app = FastAPI(
    title="Query Runner",
    description="Tracks saved searches and notifies their subscribers of changes",
    version="0.1.0",
    lifespan=lifespan
)


def get_service() -> QueryRunnerService:
    """Dependency to get the service instance."""
    if _service is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return _service


@app.get("/health")
async def health_check(service: QueryRunnerService = Depends(get_service)):
    """Health check endpoint."""
    return {
        "status": "healthy",
        "loaded": service.cache.loaded,
        "total_saved_queries": len(service.cache),
        "pending_notifications": service.dispatcher.pending,
        "timestamp": datetime.utcnow().isoformat(),
    }


@app.get("/metrics")
async def metrics(service: QueryRunnerService = Depends(get_service)):
    """Prometheus metrics."""
    return Response(generate_latest(service.metrics.registry), media_type=CONTENT_TYPE_LATEST)


@app.post("/saved-query-was-created-or-updated")
async def saved_query_was_created_or_updated(
    args: SavedQueryWasCreatedOrUpdatedArgs,
    service: QueryRunnerService = Depends(get_service)
):
    """A subject's saved queries were created or updated."""
    subject_and_config = args.subject_and_config
    await service.saved_query_was_created_or_updated(
        subject_and_config.subject.to_subject(),
        [query.to_config() for query in subject_and_config.config.saved_queries],
        disable_notifications=args.disable_subscription_notifications,
    )
    return {"status": "ok"}


@app.post("/saved-query-was-deleted")
async def saved_query_was_deleted(
    args: SavedQueryWasDeletedArgs,
    service: QueryRunnerService = Depends(get_service)
):
    """A saved query was deleted; unknown saved queries are ignored."""
    removed = await service.saved_query_was_deleted(
        args.spec.to_identity(),
        disable_notifications=args.disable_subscription_notifications,
    )
    return {"status": "ok", "deleted": removed is not None}


@app.post("/test-notification")
async def send_test_notification(
    args: SendTestNotificationArgs,
    service: QueryRunnerService = Depends(get_service)
):
    """Send a test notification to every current recipient of a saved query."""
    try:
        sent = await service.send_test_notification(args.spec.to_identity())
    except SavedQueryNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RecipientResolutionError as e:
        raise HTTPException(status_code=500, detail=f"error computing recipients: {e}")
    except DeliveryError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"status": "ok", "recipients": sent}
