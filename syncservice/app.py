"""HTTP service backing the remote store.

Run with ``uvicorn syncservice.app:app``. Data lives under
``$HABITSYNC_ROOT/remote``. Set ``HABITSYNC_SERVICE_USERNAME`` and
``HABITSYNC_SERVICE_PASSWORD`` to require HTTP Basic credentials.
"""

from __future__ import annotations

import logging
import os
import secrets
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from fastapi import Body, Depends, FastAPI, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from habitsync.errors import ValidationError
from habitsync.models import GoalPreference, SessionRecord, StreakState
from syncservice.storage import USER_ID_RE, DocumentStore

logger = logging.getLogger(__name__)

security = HTTPBasic(auto_error=False)


# ── Auth ──────────────────────────────────────────────────────

def get_current_client(credentials: HTTPBasicCredentials | None = Depends(security)) -> str:
    expected_username = os.environ.get("HABITSYNC_SERVICE_USERNAME", "")
    expected_password = os.environ.get("HABITSYNC_SERVICE_PASSWORD", "")

    if not expected_username or not expected_password:
        return "anonymous"

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Basic"},
        )

    correct_username = secrets.compare_digest(credentials.username.encode("utf-8"), expected_username.encode("utf-8"))
    correct_password = secrets.compare_digest(credentials.password.encode("utf-8"), expected_password.encode("utf-8"))

    if not (correct_username and correct_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Basic"},
        )

    return credentials.username


def _check_user(user_id: str) -> str:
    if not USER_ID_RE.match(user_id):
        raise HTTPException(status_code=400, detail=f"Invalid user id: {user_id}")
    return user_id


def _parse_stamp(value: Any) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    try:
        stamp = datetime.fromisoformat(str(value))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid updatedAt: {value}") from e
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return stamp


# ── App ───────────────────────────────────────────────────────

def create_app(root: Path | None = None) -> FastAPI:
    app = FastAPI(title="habitsync service", version="0.1.0")
    store = DocumentStore(root)

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"ok": "true"}

    @app.get("/v1/users/{user_id}/sessions/{session_id}")
    def get_session(user_id: str, session_id: str, client: str = Depends(get_current_client)) -> dict[str, Any]:
        record = store.get_record(_check_user(user_id), session_id)
        if record is None:
            raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
        return record.to_dict()

    @app.put("/v1/users/{user_id}/sessions/{session_id}")
    def put_session(
        user_id: str,
        session_id: str,
        payload: dict[str, Any] = Body(...),
        client: str = Depends(get_current_client),
    ) -> JSONResponse:
        _check_user(user_id)
        try:
            record = SessionRecord.from_dict(payload)
            streak_state = StreakState.from_dict(payload.get("streakState"))
            base_revision = int(payload.get("baseRevision", 0))
        except (TypeError, ValueError) as e:
            raise HTTPException(status_code=422, detail=f"Malformed commit: {e}") from e
        if record.session.id != session_id or record.outcome.session_id != session_id:
            raise HTTPException(status_code=422, detail="Session id mismatch")
        if record.session.identity.user_id != user_id:
            raise HTTPException(status_code=422, detail="Session belongs to another identity")

        result = store.commit(user_id, record, streak_state, base_revision)
        body: dict[str, Any] = {"status": result.status, "streakState": result.streak_state.to_dict()}
        if result.outcome is not None:
            body["outcome"] = result.outcome.to_dict()
        code = {"created": 201, "exists": 200, "conflict": 409}[result.status]
        if result.status == "created":
            logger.info("Stored session %s for %s", session_id, user_id)
        return JSONResponse(status_code=code, content=body)

    @app.get("/v1/users/{user_id}/streak")
    def get_streak(user_id: str, client: str = Depends(get_current_client)) -> dict[str, Any]:
        return store.streak(_check_user(user_id)).to_dict()

    @app.get("/v1/users/{user_id}/history")
    def get_history(user_id: str, limit: int | None = None, client: str = Depends(get_current_client)) -> dict[str, Any]:
        records = store.history(_check_user(user_id), limit)
        return {"records": [r.to_dict() for r in records]}

    @app.get("/v1/users/{user_id}/goals")
    def get_goals(user_id: str, client: str = Depends(get_current_client)) -> dict[str, Any]:
        return store.goal(_check_user(user_id)).to_dict()

    @app.patch("/v1/users/{user_id}/goals")
    def patch_goals(
        user_id: str,
        payload: dict[str, Any] = Body(...),
        client: str = Depends(get_current_client),
    ) -> dict[str, Any]:
        _check_user(user_id)
        field = payload.get("field")
        if not field:
            raise HTTPException(status_code=400, detail="Missing field")
        try:
            goal = store.patch_goal(
                user_id,
                str(field),
                payload.get("value"),
                source=str(payload.get("source", "user")),
                updated_at=_parse_stamp(payload.get("updatedAt")),
            )
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        return goal.to_dict()

    @app.post("/v1/users/{user_id}/import")
    def import_guest(
        user_id: str,
        payload: dict[str, Any] = Body(...),
        client: str = Depends(get_current_client),
    ) -> dict[str, Any]:
        _check_user(user_id)
        try:
            records = [SessionRecord.from_dict(r) for r in (payload.get("records") or [])]
            streak_state = StreakState.from_dict(payload["streakState"]) if payload.get("streakState") else None
            goal = GoalPreference.from_dict(payload["goal"]) if payload.get("goal") else None
        except (TypeError, ValueError) as e:
            raise HTTPException(status_code=422, detail=f"Malformed import: {e}") from e
        imported = store.import_records(user_id, records, streak_state, goal)
        logger.info("Imported %d guest sessions into %s", imported, user_id)
        return {"imported": imported}

    return app


app = create_app()
