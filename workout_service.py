from __future__ import annotations
import datetime
from typing import Optional

from localization import translator, success_message
from models import (
    CanonicalId,
    EntityId,
    ExerciseLog,
    ExerciseSet,
    WorkoutSession,
    WorkoutTemplate,
    clone_exercises,
    new_local_id,
)
from storage_service import StorageService


class ValidationError(ValueError):
    """Raised when a workout or template is incomplete and must not be saved."""


def _find(items, item_id: EntityId | str):
    for item in items:
        if str(item.id) == str(item_id):
            return item
    raise KeyError(str(item_id))


class ExerciseEditor:
    """Shared exercise and set manipulation for active workouts and templates."""

    DEFAULT_REPS = 10
    DEFAULT_WEIGHT = 0.0

    def __init__(self, exercises: list[ExerciseLog] | None = None) -> None:
        self.exercises: list[ExerciseLog] = exercises if exercises is not None else []

    def add_exercise(self, name: str = "") -> ExerciseLog:
        ex = ExerciseLog(
            name=name,
            sets=[ExerciseSet(reps=self.DEFAULT_REPS, weight=self.DEFAULT_WEIGHT)],
        )
        self.exercises.append(ex)
        return ex

    def rename_exercise(self, exercise_id: EntityId | str, name: str) -> None:
        _find(self.exercises, exercise_id).name = name

    def remove_exercise(self, exercise_id: EntityId | str) -> None:
        ex = _find(self.exercises, exercise_id)
        self.exercises.remove(ex)

    def add_set(self, exercise_id: EntityId | str) -> ExerciseSet:
        """Append a set copying reps and weight from the previous one."""
        ex = _find(self.exercises, exercise_id)
        prev = ex.sets[-1] if ex.sets else None
        new_set = ExerciseSet(
            reps=prev.reps if prev else self.DEFAULT_REPS,
            weight=prev.weight if prev else self.DEFAULT_WEIGHT,
        )
        ex.sets.append(new_set)
        return new_set

    def update_set(
        self,
        exercise_id: EntityId | str,
        set_id: EntityId | str,
        reps: Optional[int] = None,
        weight: Optional[float] = None,
        completed: Optional[bool] = None,
    ) -> ExerciseSet:
        ex = _find(self.exercises, exercise_id)
        target = _find(ex.sets, set_id)
        if reps is not None:
            if reps < 0:
                raise ValueError("reps must be non-negative")
            target.reps = int(reps)
        if weight is not None:
            if weight < 0:
                raise ValueError("weight must be non-negative")
            target.weight = float(weight)
        if completed is not None:
            target.completed = bool(completed)
        return target

    def remove_set(self, exercise_id: EntityId | str, set_id: EntityId | str) -> None:
        ex = _find(self.exercises, exercise_id)
        ex.sets.remove(_find(ex.sets, set_id))


class ActiveWorkout(ExerciseEditor):
    """A session being logged; nothing is persisted until it is finished."""

    def __init__(
        self,
        name: str = "",
        exercises: list[ExerciseLog] | None = None,
        duration_minutes: int = 60,
        started_at: str | None = None,
        date: str | None = None,
    ) -> None:
        super().__init__(exercises)
        self.id = new_local_id()
        self.name = name
        self.duration_minutes = duration_minutes
        # Backdated entries keep their own date; live sessions are stamped at finish.
        self.date = date
        self.started_at = started_at or datetime.datetime.now(datetime.timezone.utc).isoformat()

    def is_exercise_finished(self, exercise_id: EntityId | str) -> bool:
        ex = _find(self.exercises, exercise_id)
        return all(s.completed for s in ex.sets)

    def to_session(self) -> WorkoutSession:
        return WorkoutSession(
            name=self.name,
            exercises=self.exercises,
            duration_minutes=self.duration_minutes,
            date=self.date or datetime.datetime.now(datetime.timezone.utc).isoformat(),
        )

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "name": self.name,
            "duration_minutes": self.duration_minutes,
            "started_at": self.started_at,
            "exercises": [e.to_dict() for e in self.exercises],
        }


class TemplateEditor(ExerciseEditor):
    """Edit state for a new or existing template."""

    def __init__(self, template: WorkoutTemplate | None = None) -> None:
        if template is None:
            super().__init__([])
            self.editing_id: EntityId | None = None
            self.name = ""
        else:
            super().__init__(
                [ExerciseLog.from_dict(e.to_dict()) for e in template.exercises]
            )
            self.editing_id = template.id
            self.name = template.name

    def validate(self) -> None:
        if not self.name.strip():
            raise ValidationError(translator.gettext("Give the template a name."))
        if not self.exercises:
            raise ValidationError(translator.gettext("Add at least one exercise."))

    def build(self) -> WorkoutTemplate:
        self.validate()
        return WorkoutTemplate(
            name=self.name,
            exercises=self.exercises,
            id=self.editing_id or new_local_id(),
        )


class WorkoutService:
    """Handles conversion of templates to logged workouts and saving them."""

    def __init__(self, storage: StorageService) -> None:
        self.storage = storage

    @staticmethod
    def start_from_template(template: WorkoutTemplate) -> ActiveWorkout:
        """Begin a session from ``template`` without touching the template."""
        return ActiveWorkout(template.name, clone_exercises(template.exercises))

    @staticmethod
    def start_blank(name: str = "") -> ActiveWorkout:
        return ActiveWorkout(name)

    async def finish(
        self,
        workout: ActiveWorkout,
        name: str | None = None,
        duration_minutes: int | None = None,
    ) -> tuple[Optional[CanonicalId], str]:
        """Save ``workout`` and return the stored id with a success message."""
        if name is not None:
            workout.name = name
        if duration_minutes is not None:
            workout.duration_minutes = int(duration_minutes)
        if not workout.name or not workout.name.strip():
            raise ValidationError(
                translator.gettext("Name the workout (e.g. Ficha A, Chest, etc)")
            )
        if workout.duration_minutes < 0:
            raise ValidationError("duration must be non-negative")
        session = workout.to_session()
        saved_id = await self.storage.save_workout(session)
        return saved_id, success_message()

    async def save_template(self, editor: TemplateEditor) -> Optional[CanonicalId]:
        template = editor.build()
        return await self.storage.save_template(template)
