from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from typing import Optional

from db import AsyncWorkoutRepository, AsyncTemplateRepository, WorkoutRow, TemplateRow
from models import (
    CanonicalId,
    EntityId,
    ExerciseLog,
    HistoryPoint,
    WorkoutSession,
    WorkoutTemplate,
)
from stats_service import StatisticsService

logger = logging.getLogger(__name__)

STORE_ERRORS = (sqlite3.Error, ValueError)


def session_from_row(row: WorkoutRow) -> WorkoutSession:
    wid, date, name, exercises, duration = row
    return WorkoutSession(
        name=name,
        exercises=[ExerciseLog.from_dict(e) for e in json.loads(exercises or "[]")],
        duration_minutes=int(duration or 0),
        date=date,
        id=CanonicalId(wid),
    )


def template_from_row(row: TemplateRow) -> WorkoutTemplate:
    tid, name, exercises = row
    return WorkoutTemplate(
        name=name,
        exercises=[ExerciseLog.from_dict(e) for e in json.loads(exercises or "[]")],
        id=CanonicalId(tid),
    )


class StorageService:
    """Backend-store facade.

    Store failures are logged and never propagate: reads degrade to empty
    results and writes become no-ops returning ``None``.
    """

    def __init__(
        self,
        workout_repo: AsyncWorkoutRepository,
        template_repo: AsyncTemplateRepository,
        statistics: StatisticsService | None = None,
    ) -> None:
        self.workouts = workout_repo
        self.templates = template_repo
        self.statistics = statistics or StatisticsService()

    @staticmethod
    def _handle_error(error: Exception, context: str) -> None:
        logger.error("Store error [%s]: %s", context, error)

    async def get_workouts(self) -> list[WorkoutSession]:
        """Return saved sessions, newest first."""
        try:
            rows = await self.workouts.fetch_all_workouts()
            return [session_from_row(r) for r in rows]
        except STORE_ERRORS as e:
            self._handle_error(e, "get_workouts")
            return []

    async def get_workout(self, workout_id: str) -> Optional[WorkoutSession]:
        try:
            return session_from_row(await self.workouts.fetch_detail(workout_id))
        except STORE_ERRORS as e:
            self._handle_error(e, "get_workout")
            return None

    async def save_workout(self, session: WorkoutSession) -> Optional[CanonicalId]:
        # The store assigns the row id; any client id is dropped.
        try:
            wid = await self.workouts.create(
                session.date,
                session.name,
                [e.to_dict() for e in session.exercises],
                session.duration_minutes,
            )
            return CanonicalId(wid)
        except STORE_ERRORS as e:
            self._handle_error(e, "save_workout")
            return None

    async def delete_workout(self, workout_id: EntityId | str) -> None:
        try:
            await self.workouts.delete(str(workout_id))
        except STORE_ERRORS as e:
            self._handle_error(e, "delete_workout")

    async def get_templates(self) -> list[WorkoutTemplate]:
        """Return saved templates, most recently created first."""
        try:
            rows = await self.templates.fetch_all_templates()
            return [template_from_row(r) for r in rows]
        except STORE_ERRORS as e:
            self._handle_error(e, "get_templates")
            return []

    async def get_template(self, template_id: str) -> Optional[WorkoutTemplate]:
        try:
            return template_from_row(await self.templates.fetch_detail(template_id))
        except STORE_ERRORS as e:
            self._handle_error(e, "get_template")
            return None

    async def save_template(self, template: WorkoutTemplate) -> Optional[CanonicalId]:
        """Update a stored template or insert a new one, depending on its id tag."""
        exercises = [e.to_dict() for e in template.exercises]
        if isinstance(template.id, CanonicalId):
            try:
                await self.templates.update(template.id.value, template.name, exercises)
                return template.id
            except STORE_ERRORS as e:
                self._handle_error(e, "update_template")
                return None
        try:
            tid = await self.templates.create(template.name, exercises)
            return CanonicalId(tid)
        except STORE_ERRORS as e:
            self._handle_error(e, "create_template")
            return None

    async def delete_template(self, template_id: EntityId | str) -> None:
        try:
            await self.templates.delete(str(template_id))
        except STORE_ERRORS as e:
            self._handle_error(e, "delete_template")

    async def get_exercise_history(self, exercise_name: str) -> list[HistoryPoint]:
        workouts = await self.get_workouts()
        return self.statistics.exercise_history(workouts, exercise_name)

    async def get_all_exercise_names(self) -> list[str]:
        workouts, templates = await asyncio.gather(
            self.get_workouts(), self.get_templates()
        )
        return self.statistics.exercise_names(workouts, templates)
