import datetime
import time
from typing import List, Optional

from fastapi import (
    FastAPI,
    HTTPException,
    Response,
    APIRouter,
    Request,
    Header,
    Depends,
)
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from auth_service import AuthService, AuthError, AuthSession, resolve_screen
from config import YamlConfig
from db import AsyncWorkoutRepository, AsyncTemplateRepository
from gemini_service import (
    ChatBackend,
    CoachBusyError,
    CoachingSession,
    CoachState,
    GeminiBackend,
    analyze_workout,
)
from localization import translator
from models import ExerciseLog, ExerciseSet
from stats_service import StatisticsService
from storage_service import StorageService
from workout_service import (
    ActiveWorkout,
    TemplateEditor,
    ValidationError,
    WorkoutService,
)


class SetPayload(BaseModel):
    reps: int = Field(10, ge=0)
    weight: float = Field(0.0, ge=0)
    completed: bool = False


class ExercisePayload(BaseModel):
    name: str
    sets: List[SetPayload] = []
    notes: Optional[str] = None


class TemplatePayload(BaseModel):
    name: str
    exercises: List[ExercisePayload] = []


class SessionPayload(BaseModel):
    name: str
    exercises: List[ExercisePayload] = []
    duration_minutes: int = Field(60, ge=0)
    date: Optional[str] = None


class CredentialsPayload(BaseModel):
    email: str
    password: str


class ResetRequestPayload(BaseModel):
    email: str


class ResetVerifyPayload(BaseModel):
    email: str
    code: str


class MessagePayload(BaseModel):
    text: str


class SetupPayload(BaseModel):
    database_path: str
    gemini_api_key: Optional[str] = None


def _exercises_from_payload(items: List[ExercisePayload]) -> list[ExerciseLog]:
    return [
        ExerciseLog(
            name=ex.name,
            notes=ex.notes,
            sets=[
                ExerciseSet(reps=s.reps, weight=s.weight, completed=s.completed)
                for s in ex.sets
            ],
        )
        for ex in items
    ]


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    if authorization.lower().startswith("bearer "):
        return authorization[7:].strip()
    return authorization.strip()


class RateLimiter:
    """Sliding-window request limiter keyed by bearer token, else client address."""

    def __init__(self, limit: int = 60, window: int = 60) -> None:
        self.limit = limit
        self.window = window
        self.requests: dict[str, list[float]] = {}

    @staticmethod
    def _caller(request: Request) -> str:
        token = _bearer(request.headers.get("authorization"))
        if token:
            return f"token:{token}"
        return f"ip:{request.client.host if request.client else 'anon'}"

    async def __call__(self, request: Request, call_next):
        caller = self._caller(request)
        now = time.time()
        recent = [t for t in self.requests.get(caller, []) if now - t < self.window]
        if len(recent) >= self.limit:
            retry_after = int(self.window - (now - recent[0])) + 1
            return Response(
                "rate limit exceeded",
                status_code=429,
                headers={"Retry-After": str(retry_after)},
            )
        recent.append(now)
        self.requests[caller] = recent
        return await call_next(request)


class IronAPI:
    """Provides REST endpoints for workout logging and coaching."""

    ANONYMOUS = "anonymous"

    def __init__(
        self,
        db_path: str | None = None,
        yaml_path: str = "settings.yaml",
        *,
        chat_backend: ChatBackend | None = None,
        require_auth: bool = False,
        rate_limit: int | None = None,
        rate_window: int = 60,
    ) -> None:
        self.config = YamlConfig(yaml_path)
        settings = self.config.resolved()
        translator.set_language(settings.get("language", "pt-BR"))
        self.db_path = db_path or settings["database_path"]
        self.require_auth = require_auth
        self.workout_repo = AsyncWorkoutRepository(self.db_path)
        self.template_repo = AsyncTemplateRepository(self.db_path)
        self.statistics = StatisticsService()
        self.storage = StorageService(
            self.workout_repo, self.template_repo, self.statistics
        )
        self.workouts = WorkoutService(self.storage)
        self.auth = AuthService(self.db_path)
        self.backend = chat_backend or GeminiBackend(
            settings.get("gemini_api_key") or None,
            settings.get("gemini_model", "gemini-2.5-flash"),
        )
        # user id -> coaching session; callers without a session share ANONYMOUS
        self.coaches: dict[str, CoachingSession] = {}
        self.active_workouts: dict[str, ActiveWorkout] = {}
        self.app = FastAPI(
            title="IronCoach API",
            description="REST API for workout logging, progress and coaching",
        )
        if rate_limit is not None:
            limiter = RateLimiter(limit=rate_limit, window=rate_window)
            self.app.middleware("http")(limiter)
        self._setup_routes()

    def _current_session(
        self, authorization: Optional[str] = Header(None)
    ) -> Optional[AuthSession]:
        session = self.auth.get_session(_bearer(authorization))
        if self.require_auth and session is None:
            raise HTTPException(status_code=401, detail="not authenticated")
        return session

    def coach_for(self, session: Optional[AuthSession]) -> CoachingSession:
        key = session.user_id if session is not None else self.ANONYMOUS
        if key not in self.coaches:
            self.coaches[key] = CoachingSession(self.backend)
        return self.coaches[key]

    def _active(self, session_id: str) -> ActiveWorkout:
        try:
            return self.active_workouts[session_id]
        except KeyError:
            raise HTTPException(status_code=404, detail="session not found")

    def _setup_routes(self) -> None:
        guarded = [Depends(self._current_session)]
        workouts_router = APIRouter(prefix="/workouts", tags=["Workouts"], dependencies=guarded)
        templates_router = APIRouter(prefix="/templates", tags=["Templates"], dependencies=guarded)
        sessions_router = APIRouter(prefix="/sessions", tags=["Sessions"], dependencies=guarded)
        stats_router = APIRouter(prefix="/stats", tags=["Statistics"], dependencies=guarded)
        coach_router = APIRouter(prefix="/coach", tags=["Coach"], dependencies=guarded)
        auth_router = APIRouter(prefix="/auth", tags=["Auth"])

        def caller_coach(
            session: Optional[AuthSession] = Depends(self._current_session),
        ) -> CoachingSession:
            return self.coach_for(session)

        @self.app.get(
            "/health",
            summary="Health check",
            description="Verify API and database connectivity.",
        )
        async def health():
            """Return API and database connection status."""
            try:
                await self.workout_repo.fetch_all_workouts()
                return {"status": "ok"}
            except Exception as e:  # pragma: no cover - connectivity failure
                raise HTTPException(status_code=500, detail=str(e))

        @self.app.get("/setup")
        def setup_state(authorization: Optional[str] = Header(None)):
            session = self.auth.get_session(_bearer(authorization))
            return {
                "configured": self.config.is_backend_configured(),
                "screen": resolve_screen(self.config, session),
            }

        @self.app.post("/setup")
        def save_setup(payload: SetupPayload):
            if not payload.database_path.strip():
                raise HTTPException(status_code=400, detail="database_path required")
            try:
                self.config.update(
                    database_path=payload.database_path.strip(),
                    gemini_api_key=payload.gemini_api_key,
                )
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            return {"status": "saved", "restart_required": True}

        @self.app.post("/settings/theme")
        def toggle_theme():
            return {"theme": self.config.toggle_theme()}

        @workouts_router.get("")
        async def list_workouts():
            return [w.to_dict() for w in await self.storage.get_workouts()]

        @workouts_router.post("")
        async def create_workout(payload: SessionPayload):
            if payload.date is not None:
                try:
                    datetime.datetime.fromisoformat(payload.date.replace("Z", "+00:00"))
                except ValueError:
                    raise HTTPException(status_code=400, detail="date must be ISO-8601")
            active = ActiveWorkout(
                payload.name,
                _exercises_from_payload(payload.exercises),
                payload.duration_minutes,
                date=payload.date,
            )
            try:
                wid, message = await self.workouts.finish(active)
            except ValidationError as e:
                raise HTTPException(status_code=400, detail=str(e))
            return {"id": str(wid) if wid else None, "message": message}

        @workouts_router.get("/{workout_id}")
        async def get_workout(workout_id: str):
            workout = await self.storage.get_workout(workout_id)
            if workout is None:
                raise HTTPException(status_code=404, detail="workout not found")
            return workout.to_dict()

        @workouts_router.delete("/{workout_id}")
        async def delete_workout(workout_id: str):
            await self.storage.delete_workout(workout_id)
            return {"status": "deleted"}

        @templates_router.get("")
        async def list_templates():
            return [t.to_dict() for t in await self.storage.get_templates()]

        @templates_router.post("")
        async def create_template(payload: TemplatePayload):
            editor = TemplateEditor()
            editor.name = payload.name
            editor.exercises = _exercises_from_payload(payload.exercises)
            try:
                tid = await self.workouts.save_template(editor)
            except ValidationError as e:
                raise HTTPException(status_code=400, detail=str(e))
            return {"id": str(tid) if tid else None}

        @templates_router.put("/{template_id}")
        async def update_template(template_id: str, payload: TemplatePayload):
            existing = await self.storage.get_template(template_id)
            if existing is None:
                raise HTTPException(status_code=404, detail="template not found")
            editor = TemplateEditor(existing)
            editor.name = payload.name
            editor.exercises = _exercises_from_payload(payload.exercises)
            try:
                await self.workouts.save_template(editor)
            except ValidationError as e:
                raise HTTPException(status_code=400, detail=str(e))
            return {"status": "updated"}

        @templates_router.delete("/{template_id}")
        async def delete_template(template_id: str):
            await self.storage.delete_template(template_id)
            return {"status": "deleted"}

        @templates_router.post("/{template_id}/start")
        async def start_from_template(template_id: str):
            template = await self.storage.get_template(template_id)
            if template is None:
                raise HTTPException(status_code=404, detail="template not found")
            active = self.workouts.start_from_template(template)
            self.active_workouts[str(active.id)] = active
            return active.to_dict()

        @sessions_router.post("")
        def start_blank(name: str = ""):
            active = self.workouts.start_blank(name)
            self.active_workouts[str(active.id)] = active
            return active.to_dict()

        @sessions_router.get("/{session_id}")
        def get_active(session_id: str):
            return self._active(session_id).to_dict()

        @sessions_router.post("/{session_id}/exercises")
        def add_exercise(session_id: str, name: str = ""):
            ex = self._active(session_id).add_exercise(name)
            return ex.to_dict()

        @sessions_router.delete("/{session_id}/exercises/{exercise_id}")
        def remove_exercise(session_id: str, exercise_id: str):
            try:
                self._active(session_id).remove_exercise(exercise_id)
            except KeyError:
                raise HTTPException(status_code=404, detail="exercise not found")
            return {"status": "deleted"}

        @sessions_router.post("/{session_id}/exercises/{exercise_id}/sets")
        def add_set(session_id: str, exercise_id: str):
            try:
                new_set = self._active(session_id).add_set(exercise_id)
            except KeyError:
                raise HTTPException(status_code=404, detail="exercise not found")
            return new_set.to_dict()

        @sessions_router.put("/{session_id}/exercises/{exercise_id}/sets/{set_id}")
        def update_set(
            session_id: str,
            exercise_id: str,
            set_id: str,
            reps: int | None = None,
            weight: float | None = None,
            completed: bool | None = None,
        ):
            active = self._active(session_id)
            try:
                updated = active.update_set(exercise_id, set_id, reps, weight, completed)
            except KeyError:
                raise HTTPException(status_code=404, detail="set not found")
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            return updated.to_dict()

        @sessions_router.delete("/{session_id}/exercises/{exercise_id}/sets/{set_id}")
        def remove_set(session_id: str, exercise_id: str, set_id: str):
            try:
                self._active(session_id).remove_set(exercise_id, set_id)
            except KeyError:
                raise HTTPException(status_code=404, detail="set not found")
            return {"status": "deleted"}

        @sessions_router.post("/{session_id}/finish")
        async def finish_session(
            session_id: str,
            name: str | None = None,
            duration_minutes: int | None = None,
        ):
            active = self._active(session_id)
            try:
                wid, message = await self.workouts.finish(active, name, duration_minutes)
            except ValidationError as e:
                raise HTTPException(status_code=400, detail=str(e))
            self.active_workouts.pop(session_id, None)
            return {"id": str(wid) if wid else None, "message": message}

        @stats_router.get("/history")
        async def exercise_history(exercise: str):
            points = await self.storage.get_exercise_history(exercise)
            summary = self.statistics.progress_summary(points)
            return {
                "exercise": exercise,
                "points": [p.to_dict() for p in points],
                **summary,
            }

        @stats_router.get("/exercises")
        async def exercise_names():
            return await self.storage.get_all_exercise_names()

        @stats_router.get("/dashboard")
        async def dashboard():
            data = self.statistics.dashboard(await self.storage.get_workouts())
            last = data["last_workout"]
            data["last_workout"] = last.to_dict() if last is not None else None
            return data

        @stats_router.get("/calendar")
        async def calendar_month(year: int, month: int):
            if not 1 <= month <= 12:
                raise HTTPException(status_code=400, detail="month must be 1-12")
            data = self.statistics.calendar_month(
                await self.storage.get_workouts(), year, month
            )
            for day in data["days"]:
                day["workouts"] = [w.to_dict() for w in day["workouts"]]
            return data

        @stats_router.get("/day")
        async def workouts_on(date: str):
            try:
                day = datetime.date.fromisoformat(date)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            workouts = self.statistics.workouts_on(await self.storage.get_workouts(), day)
            return [w.to_dict() for w in workouts]

        @coach_router.post("/initialize")
        def initialize_coach(coach: CoachingSession = Depends(caller_coach)):
            coach.initialize()
            coach.reset_messages()
            return {"status": "initialized"}

        @coach_router.get("/messages")
        def list_messages(coach: CoachingSession = Depends(caller_coach)):
            return [m.to_dict() for m in coach.messages]

        @coach_router.get("/history")
        def raw_history(coach: CoachingSession = Depends(caller_coach)):
            return coach.history

        @coach_router.post("/messages")
        async def send_message(
            payload: MessagePayload,
            coach: CoachingSession = Depends(caller_coach),
        ):
            if not payload.text.strip():
                raise HTTPException(status_code=400, detail="message must not be empty")
            if coach.state is CoachState.STREAMING:
                raise HTTPException(status_code=409, detail="a reply is already streaming")
            stream = coach.send(payload.text)
            try:
                first = await stream.__anext__()
            except CoachBusyError as e:
                raise HTTPException(status_code=409, detail=str(e))
            except StopAsyncIteration:
                first = None

            async def body():
                try:
                    if first is not None:
                        yield first
                    async for fragment in stream:
                        yield fragment
                finally:
                    await stream.aclose()

            return StreamingResponse(body(), media_type="text/plain; charset=utf-8")

        @coach_router.post("/analyze/{workout_id}")
        async def analyze(workout_id: str):
            workout = await self.storage.get_workout(workout_id)
            if workout is None:
                raise HTTPException(status_code=404, detail="workout not found")
            return {"analysis": await analyze_workout(self.backend, workout)}

        @auth_router.post("/signup")
        def signup(payload: CredentialsPayload):
            try:
                session = self.auth.sign_up(payload.email, payload.password)
            except AuthError as e:
                raise HTTPException(status_code=400, detail=e.user_message)
            return {
                **session.to_dict(),
                "message": translator.gettext("Account created! Signing in..."),
            }

        @auth_router.post("/login")
        def login(payload: CredentialsPayload):
            try:
                return self.auth.sign_in(payload.email, payload.password).to_dict()
            except AuthError as e:
                raise HTTPException(status_code=400, detail=e.user_message)

        @auth_router.post("/reset/request")
        def request_reset(payload: ResetRequestPayload):
            try:
                self.auth.request_reset_code(payload.email)
            except AuthError as e:
                raise HTTPException(status_code=400, detail=e.user_message)
            return {"message": translator.gettext("Code sent! Check your email.")}

        @auth_router.post("/reset/verify")
        def verify_reset(payload: ResetVerifyPayload):
            try:
                session = self.auth.verify_reset_code(payload.email, payload.code)
            except AuthError as e:
                raise HTTPException(status_code=400, detail=e.user_message)
            return {
                **session.to_dict(),
                "message": translator.gettext("Code verified! Signing in..."),
            }

        @auth_router.post("/logout")
        def logout(authorization: Optional[str] = Header(None)):
            token = _bearer(authorization)
            if token:
                self.auth.sign_out(token)
            return {"status": "signed_out"}

        @auth_router.get("/session")
        def current_session(authorization: Optional[str] = Header(None)):
            session = self.auth.get_session(_bearer(authorization))
            return session.to_dict() if session is not None else None

        self.app.include_router(auth_router)
        self.app.include_router(workouts_router)
        self.app.include_router(templates_router)
        self.app.include_router(sessions_router)
        self.app.include_router(stats_router)
        self.app.include_router(coach_router)


api = IronAPI()
app = api.app

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app)
