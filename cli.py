import argparse
import asyncio
import json
import logging
import shutil

from db import AsyncWorkoutRepository, AsyncTemplateRepository
from models import ExerciseLog, ExerciseSet, WorkoutTemplate
from storage_service import StorageService
from workout_service import WorkoutService


def _storage(db_path: str) -> StorageService:
    return StorageService(AsyncWorkoutRepository(db_path), AsyncTemplateRepository(db_path))


def export_workouts(db_path: str, output_path: str) -> int:
    """Write every saved session to ``output_path`` as JSON."""
    workouts = asyncio.run(_storage(db_path).get_workouts())
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump([w.to_dict() for w in workouts], f, ensure_ascii=False, indent=2)
    return len(workouts)


def backup_db(db_path: str, backup_path: str) -> None:
    shutil.copy(db_path, backup_path)


def restore_db(backup_path: str, db_path: str) -> None:
    shutil.copy(backup_path, db_path)


async def _demo(db_path: str) -> bool:
    storage = _storage(db_path)
    if await storage.get_workouts():
        return False
    template = WorkoutTemplate(
        "Ficha A",
        [
            ExerciseLog("Supino", [ExerciseSet(10, 40.0), ExerciseSet(8, 45.0)]),
            ExerciseLog("Agachamento", [ExerciseSet(10, 60.0)]),
        ],
    )
    await storage.save_template(template)
    service = WorkoutService(storage)
    active = service.start_from_template(template)
    for ex in active.exercises:
        for s in ex.sets:
            s.completed = True
    await service.finish(active, duration_minutes=50)
    return True


def demo_data(db_path: str) -> None:
    """Populate the database with a demo template and session if empty."""
    if asyncio.run(_demo(db_path)):
        print("Demo data inserted")
    else:
        print("Database already contains workouts")


def print_history(db_path: str, exercise: str) -> None:
    points = asyncio.run(_storage(db_path).get_exercise_history(exercise))
    if not points:
        print(f"No history for {exercise}")
        return
    for p in points:
        print(f"{p.label}\t{p.weight:g} kg\t{p.reps} reps\t{p.volume:g} vol")


def main() -> None:
    parser = argparse.ArgumentParser(description="Utility commands")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="cmd", required=True)

    exp = sub.add_parser("export")
    exp.add_argument("--db", default="workout.db")
    exp.add_argument("--out", default="workouts.json")

    bkp = sub.add_parser("backup")
    bkp.add_argument("--db", default="workout.db")
    bkp.add_argument("--out", default="backup.db")

    rst = sub.add_parser("restore")
    rst.add_argument("--in", dest="src", default="backup.db")
    rst.add_argument("--db", default="workout.db")

    demo = sub.add_parser("demo")
    demo.add_argument("--db", default="workout.db")

    hist = sub.add_parser("history")
    hist.add_argument("exercise")
    hist.add_argument("--db", default="workout.db")

    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)

    if args.cmd == "export":
        count = export_workouts(args.db, args.out)
        print(f"Exported {count} workouts to {args.out}")
    elif args.cmd == "backup":
        backup_db(args.db, args.out)
    elif args.cmd == "restore":
        restore_db(args.src, args.db)
    elif args.cmd == "demo":
        demo_data(args.db)
    elif args.cmd == "history":
        print_history(args.db, args.exercise)


if __name__ == "__main__":
    main()
