"""Domain records shared by the store, services and REST layer."""

from __future__ import annotations

import datetime
import uuid
from dataclasses import dataclass, field
from typing import Optional, Union


@dataclass(frozen=True)
class LocalId:
    """Identifier generated client-side; never used as a row key."""

    value: str

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class CanonicalId:
    """Identifier assigned by the store when a row is inserted."""

    value: str

    def __str__(self) -> str:
        return self.value


EntityId = Union[LocalId, CanonicalId]


def new_local_id() -> LocalId:
    return LocalId(uuid.uuid4().hex)


@dataclass
class ExerciseSet:
    reps: int = 10
    weight: float = 0.0
    completed: bool = False
    id: EntityId = field(default_factory=new_local_id)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "reps": self.reps,
            "weight": self.weight,
            "completed": self.completed,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExerciseSet":
        return cls(
            reps=int(data.get("reps", 0)),
            weight=float(data.get("weight", 0.0)),
            completed=bool(data.get("completed", False)),
            id=LocalId(str(data["id"])) if data.get("id") else new_local_id(),
        )


@dataclass
class ExerciseLog:
    name: str = ""
    sets: list[ExerciseSet] = field(default_factory=list)
    notes: Optional[str] = None
    id: EntityId = field(default_factory=new_local_id)

    def to_dict(self) -> dict:
        data = {
            "id": str(self.id),
            "name": self.name,
            "sets": [s.to_dict() for s in self.sets],
        }
        if self.notes is not None:
            data["notes"] = self.notes
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ExerciseLog":
        return cls(
            name=str(data.get("name", "")),
            sets=[ExerciseSet.from_dict(s) for s in data.get("sets") or []],
            notes=data.get("notes"),
            id=LocalId(str(data["id"])) if data.get("id") else new_local_id(),
        )


@dataclass
class WorkoutTemplate:
    name: str
    exercises: list[ExerciseLog] = field(default_factory=list)
    id: EntityId = field(default_factory=new_local_id)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "name": self.name,
            "exercises": [e.to_dict() for e in self.exercises],
        }


@dataclass
class WorkoutSession:
    name: str
    exercises: list[ExerciseLog] = field(default_factory=list)
    duration_minutes: int = 60
    date: str = field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc).isoformat()
    )
    id: EntityId = field(default_factory=new_local_id)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "date": self.date,
            "name": self.name,
            "exercises": [e.to_dict() for e in self.exercises],
            "duration_minutes": self.duration_minutes,
        }

    def total_sets(self) -> int:
        return sum(len(e.sets) for e in self.exercises)


def clone_exercises(exercises: list[ExerciseLog]) -> list[ExerciseLog]:
    """Deep copy ``exercises`` with fresh ids and every set reset to not completed."""
    cloned: list[ExerciseLog] = []
    for ex in exercises:
        cloned.append(
            ExerciseLog(
                name=ex.name,
                notes=ex.notes,
                sets=[
                    ExerciseSet(reps=s.reps, weight=s.weight, completed=False)
                    for s in ex.sets
                ],
            )
        )
    return cloned


@dataclass
class ChatMessage:
    role: str
    text: str
    is_thinking: bool = False

    def to_dict(self) -> dict:
        return {"role": self.role, "text": self.text, "is_thinking": self.is_thinking}


@dataclass
class HistoryPoint:
    date: str
    label: str
    weight: float
    reps: int
    volume: float

    def to_dict(self) -> dict:
        return {
            "date": self.date,
            "label": self.label,
            "weight": self.weight,
            "reps": self.reps,
            "volume": self.volume,
        }
