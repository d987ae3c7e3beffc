from __future__ import annotations
import calendar
import datetime
from typing import Dict, Iterable, List, Optional

from models import HistoryPoint, WorkoutSession, WorkoutTemplate


class StatisticsService:
    """Compute workout statistics for analysis."""

    PREVIEW_EXERCISES = 2

    @staticmethod
    def _parse_timestamp(ts: str) -> datetime.datetime:
        """Return ``ts`` as timezone-aware datetime in UTC."""
        dt = datetime.datetime.fromisoformat(ts.replace("Z", "+00:00"))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=datetime.timezone.utc)
        return dt.astimezone(datetime.timezone.utc)

    @classmethod
    def _label(cls, ts: str) -> str:
        dt = cls._parse_timestamp(ts)
        return f"{dt.strftime('%b')} {dt.day}"

    def _chronological(self, sessions: Iterable[WorkoutSession]) -> List[WorkoutSession]:
        """Oldest first. ``sessions`` arrive in store order (newest first), so
        sessions sharing a timestamp come out oldest-inserted first."""
        return sorted(reversed(list(sessions)), key=lambda s: self._parse_timestamp(s.date))

    def exercise_history(
        self,
        sessions: Iterable[WorkoutSession],
        exercise: str,
    ) -> List[HistoryPoint]:
        """Return one point per matching exercise log, oldest session first.

        Names match ignoring case and surrounding whitespace. Every matching
        log in a session contributes its own point. A log without sets yields a zero point.
        """
        target = exercise.strip().casefold()
        history: List[HistoryPoint] = []
        for session in self._chronological(sessions):
            for log in session.exercises:
                if log.name.strip().casefold() != target:
                    continue
                weights = [s.weight for s in log.sets]
                history.append(
                    HistoryPoint(
                        date=session.date,
                        label=self._label(session.date),
                        weight=float(max(weights)) if weights else 0.0,
                        reps=sum(int(s.reps) for s in log.sets),
                        volume=float(sum(s.weight * s.reps for s in log.sets)),
                    )
                )
        return history

    def exercise_names(
        self,
        sessions: Iterable[WorkoutSession],
        templates: Iterable[WorkoutTemplate],
    ) -> List[str]:
        """Return the distinct exercise names across sessions and templates.

        Deduplication ignores case; the first spelling seen is kept.
        """
        seen: Dict[str, str] = {}
        for source in (sessions, templates):
            for item in source:
                for log in item.exercises:
                    name = log.name.strip()
                    if name and name.casefold() not in seen:
                        seen[name.casefold()] = name
        return sorted(seen.values(), key=lambda n: (n.casefold(), n))

    def progress_summary(self, points: List[HistoryPoint]) -> Dict[str, float]:
        if not points:
            return {"max_weight": 0.0, "max_volume": 0.0}
        return {
            "max_weight": max(p.weight for p in points),
            "max_volume": max(p.volume for p in points),
        }

    def dashboard(self, sessions: Iterable[WorkoutSession]) -> dict:
        ordered = list(reversed(self._chronological(sessions)))
        last: Optional[WorkoutSession] = ordered[0] if ordered else None
        preview = []
        more = 0
        if last is not None:
            preview = [
                {"name": ex.name, "sets": len(ex.sets)}
                for ex in last.exercises[: self.PREVIEW_EXERCISES]
            ]
            more = max(len(last.exercises) - self.PREVIEW_EXERCISES, 0)
        return {
            "total_workouts": len(ordered),
            "total_sets": sum(s.total_sets() for s in ordered),
            "last_workout": last,
            "preview": preview,
            "more_exercises": more,
        }

    @staticmethod
    def day_label(name: str) -> str:
        label = ""
        if "ficha" in name.lower():
            parts = name.split(" ")
            if len(parts) > 1:
                label = parts[1][:1].upper()
        if not label:
            label = name[:1].upper()
        return label

    def workouts_on(
        self, sessions: Iterable[WorkoutSession], day: datetime.date
    ) -> List[WorkoutSession]:
        return [s for s in sessions if self._parse_timestamp(s.date).date() == day]

    def calendar_month(
        self, sessions: Iterable[WorkoutSession], year: int, month: int
    ) -> dict:
        """Return the data needed to draw one month of the calendar."""
        first_weekday, days_in_month = calendar.monthrange(year, month)
        sessions = list(sessions)
        days = []
        for day in range(1, days_in_month + 1):
            day_workouts = self.workouts_on(sessions, datetime.date(year, month, day))
            days.append(
                {
                    "day": day,
                    "workouts": day_workouts,
                    "label": self.day_label(day_workouts[0].name) if day_workouts else "",
                }
            )
        return {
            "year": year,
            "month": month,
            "days_in_month": days_in_month,
            # Sunday-first grid
            "leading_blanks": (first_weekday + 1) % 7,
            "days": days,
        }
