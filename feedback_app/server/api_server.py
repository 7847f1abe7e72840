"""FastAPI server that exposes the feedback endpoints and the live WebSocket."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, HTTPException, Response, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from pydantic import AliasChoices, BaseModel, Field
import uvicorn

from feedback_app.constants.about import APP_NAME, APP_VERSION
from feedback_app.constants.network_constants import DEFAULT_CORS_ORIGINS, DEFAULT_HOST, DEFAULT_PORT
from feedback_app.core.errors import InvalidInput, NotFound, PersistenceError
from feedback_app.core.models import ClassSession, Comment, RatingInput
from feedback_app.core.session_coordinator import SessionCoordinator
from feedback_app.server.websocket_transport import serve_connection


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc).isoformat()
    return value.astimezone(timezone.utc).isoformat()


class SetupPayload(BaseModel):
    """Payload schema for configuring a class session."""

    topics: list[str]


class RatingPayload(BaseModel):
    topic_id: int = Field(validation_alias=AliasChoices("topic_id", "topicId"))
    score: int


class FeedbackPayload(BaseModel):
    """Payload schema for the final feedback submission."""

    ratings: list[RatingPayload]
    general_comment: str | None = Field(
        default=None,
        validation_alias=AliasChoices("general_comment", "generalComment"),
    )


class CommentPayload(BaseModel):
    text: str


@contextmanager
def _http_errors() -> Iterator[None]:
    try:
        yield
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidInput as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except PersistenceError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


def _session_info(session: ClassSession) -> dict[str, object]:
    return {
        "class_id": session.class_id,
        "created_at": _iso(session.created_at),
        "topics": [{"id": topic.id, "name": topic.name} for topic in session.topics],
    }


def _comment_info(comment: Comment) -> dict[str, object]:
    return {"text": comment.text, "timestamp": _iso(comment.created_at)}


def _get_coordinator_dependency(coordinator: SessionCoordinator):
    def dependency() -> SessionCoordinator:
        return coordinator

    return dependency


def create_api_app(
    coordinator: SessionCoordinator,
    cors_origins: Sequence[str] = DEFAULT_CORS_ORIGINS,
) -> FastAPI:
    """Create a FastAPI application wired to the provided session coordinator."""
    app = FastAPI(title=f"{APP_NAME} API", version=APP_VERSION)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    coordinator_dep = _get_coordinator_dependency(coordinator)

    @app.get("/health")
    def health(
        response: Response,
        manager: SessionCoordinator = Depends(coordinator_dep),
    ) -> dict[str, object]:
        database_ok = manager.store.ping()
        if not database_ok:
            response.status_code = 503
        return {
            "status": "healthy" if database_ok else "unhealthy",
            "database": "ok" if database_ok else "unreachable",
            "version": APP_VERSION,
        }

    @app.post("/api/class/{class_id}/setup", status_code=201)
    def setup_class(
        class_id: str,
        payload: SetupPayload,
        manager: SessionCoordinator = Depends(coordinator_dep),
    ) -> dict[str, object]:
        with _http_errors():
            session = manager.setup(class_id, payload.topics)
        return {
            "message": f"Session for {session.class_id} created successfully.",
            **_session_info(session),
        }

    @app.get("/api/class/{class_id}/topics")
    def get_topics(
        class_id: str,
        manager: SessionCoordinator = Depends(coordinator_dep),
    ) -> dict[str, object]:
        with _http_errors():
            topics = manager.get_topics(class_id)
        return {"topics": [{"id": topic.id, "name": topic.name} for topic in topics]}

    @app.delete("/api/class/{class_id}", status_code=204)
    def delete_class(
        class_id: str,
        manager: SessionCoordinator = Depends(coordinator_dep),
    ) -> Response:
        with _http_errors():
            manager.delete_session(class_id)
        return Response(status_code=204)

    @app.get("/api/class/{class_id}/presence")
    def get_presence(
        class_id: str,
        manager: SessionCoordinator = Depends(coordinator_dep),
    ) -> dict[str, object]:
        with _http_errors():
            counts = manager.presence(class_id)
        return {"student_count": counts.student_count, "teacher_count": counts.teacher_count}

    @app.post("/api/feedback/{class_id}", status_code=201)
    def submit_feedback(
        class_id: str,
        payload: FeedbackPayload,
        manager: SessionCoordinator = Depends(coordinator_dep),
    ) -> dict[str, object]:
        ratings = [RatingInput(topic_id=item.topic_id, score=item.score) for item in payload.ratings]
        with _http_errors():
            receipt = manager.submit_feedback(class_id, ratings, payload.general_comment)
        return {
            "message": "Feedback submitted successfully!",
            "ratings_recorded": receipt.ratings_recorded,
            "comment_recorded": receipt.comment_recorded,
        }

    @app.post("/api/feedback/{class_id}/live", status_code=201)
    def submit_live_rating(
        class_id: str,
        payload: RatingPayload,
        manager: SessionCoordinator = Depends(coordinator_dep),
    ) -> dict[str, object]:
        with _http_errors():
            stats = manager.submit_live_rating(class_id, payload.topic_id, payload.score)
        return {"topic_id": payload.topic_id, "average": stats.average, "count": stats.count}

    @app.post("/api/feedback/{class_id}/comment", status_code=201)
    def submit_comment(
        class_id: str,
        payload: CommentPayload,
        manager: SessionCoordinator = Depends(coordinator_dep),
    ) -> dict[str, object]:
        with _http_errors():
            comment = manager.submit_comment(class_id, payload.text)
        return _comment_info(comment)

    @app.get("/api/feedback/{class_id}/summary")
    def get_summary(
        class_id: str,
        manager: SessionCoordinator = Depends(coordinator_dep),
    ) -> dict[str, object]:
        with _http_errors():
            summary = manager.get_summary(class_id)
        return {
            "class_id": summary.class_id,
            "created_at": _iso(summary.created_at),
            "topics": [
                {"id": topic.id, "name": topic.name, "average": topic.average, "count": topic.count}
                for topic in summary.topics
            ],
            "comments": [_comment_info(comment) for comment in summary.comments],
            "total_ratings": summary.total_ratings,
            "overall_average": summary.overall_average,
            "total_comments": summary.total_comments,
        }

    @app.websocket("/ws/{class_id}")
    async def live_connection(websocket: WebSocket, class_id: str, role: str = "student") -> None:
        await serve_connection(websocket, coordinator, class_id, role)

    return app


def run_api_server(
    coordinator: SessionCoordinator,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
    log_level: str = "info",
    cors_origins: Sequence[str] = DEFAULT_CORS_ORIGINS,
) -> None:
    """Serve the API with uvicorn until the process is stopped."""
    app = create_api_app(coordinator, cors_origins=cors_origins)
    config = uvicorn.Config(app=app, host=host, port=port, log_level=log_level.lower())
    server = uvicorn.Server(config)
    server.run()
