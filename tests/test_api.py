import datetime
import os
import sys
import tempfile
import unittest
from fastapi.testclient import TestClient

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from localization import translator
from gemini_service import CoachState
from rest_api import IronAPI


class FakeBackend:
    def __init__(self, fragments=("Olá! ", "Vamos ", "treinar.")):
        self.fragments = list(fragments)
        self.calls = []

    async def stream_chat(self, contents, system_instruction):
        self.calls.append(contents)
        for fragment in self.fragments:
            yield fragment

    async def generate(self, prompt):
        return "Boa carga.\nDescanse bem.\nHidrate-se."


class APITestCase(unittest.TestCase):
    require_auth = False

    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.tmp.name, "workout.db")
        self.yaml_path = os.path.join(self.tmp.name, "settings.yaml")
        self.backend = FakeBackend()
        self.api = IronAPI(
            self.db_path,
            self.yaml_path,
            chat_backend=self.backend,
            require_auth=self.require_auth,
        )
        self.client = TestClient(self.api.app)

    def tearDown(self) -> None:
        self.tmp.cleanup()


class WorkoutFlowTest(APITestCase):
    def _template_id(self) -> str:
        resp = self.client.post(
            "/templates",
            json={
                "name": "Treino A",
                "exercises": [{"name": "Supino", "sets": [{"reps": 10, "weight": 40}]}],
            },
        )
        self.assertEqual(resp.status_code, 200)
        return resp.json()["id"]

    def test_health(self) -> None:
        self.assertEqual(self.client.get("/health").json(), {"status": "ok"})

    def test_template_to_history(self) -> None:
        tid = self._template_id()
        active = self.client.post(f"/templates/{tid}/start").json()
        self.assertEqual(active["name"], "Treino A")
        ex = active["exercises"][0]
        set_id = ex["sets"][0]["id"]
        resp = self.client.put(
            f"/sessions/{active['id']}/exercises/{ex['id']}/sets/{set_id}",
            params={"completed": True},
        )
        self.assertTrue(resp.json()["completed"])

        resp = self.client.post(
            f"/sessions/{active['id']}/finish", params={"duration_minutes": 45}
        )
        self.assertEqual(resp.status_code, 200)
        wid = resp.json()["id"]
        self.assertTrue(resp.json()["message"])

        workouts = self.client.get("/workouts").json()
        self.assertEqual(len(workouts), 1)
        self.assertEqual(workouts[0]["id"], wid)
        self.assertEqual(workouts[0]["duration_minutes"], 45)
        self.assertEqual(workouts[0]["exercises"][0]["sets"][0]["completed"], True)

        history = self.client.get("/stats/history", params={"exercise": "supino"}).json()
        self.assertEqual(
            [(p["weight"], p["reps"], p["volume"]) for p in history["points"]],
            [(40.0, 10, 400.0)],
        )
        self.assertEqual(history["max_volume"], 400.0)

        template = self.client.get("/templates").json()[0]
        self.assertFalse(template["exercises"][0]["sets"][0]["completed"])
        self.assertEqual(self.client.get(f"/sessions/{active['id']}").status_code, 404)

    def test_finish_without_name_is_rejected(self) -> None:
        active = self.client.post("/sessions").json()
        resp = self.client.post(f"/sessions/{active['id']}/finish")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(
            resp.json()["detail"],
            translator.gettext("Name the workout (e.g. Ficha A, Chest, etc)"),
        )
        self.assertEqual(self.client.get("/workouts").json(), [])

    def test_set_editing(self) -> None:
        active = self.client.post("/sessions", params={"name": "Pernas"}).json()
        ex = self.client.post(
            f"/sessions/{active['id']}/exercises", params={"name": "Agachamento"}
        ).json()
        added = self.client.post(f"/sessions/{active['id']}/exercises/{ex['id']}/sets").json()
        self.assertEqual((added["reps"], added["weight"]), (10, 0.0))
        resp = self.client.put(
            f"/sessions/{active['id']}/exercises/{ex['id']}/sets/{added['id']}",
            params={"weight": -5},
        )
        self.assertEqual(resp.status_code, 400)
        resp = self.client.delete(
            f"/sessions/{active['id']}/exercises/{ex['id']}/sets/{added['id']}"
        )
        self.assertEqual(resp.json(), {"status": "deleted"})
        state = self.client.get(f"/sessions/{active['id']}").json()
        self.assertEqual(len(state["exercises"][0]["sets"]), 1)

    def test_template_update_and_validation(self) -> None:
        resp = self.client.post("/templates", json={"name": "Vazia", "exercises": []})
        self.assertEqual(resp.status_code, 400)
        tid = self._template_id()
        resp = self.client.put(
            f"/templates/{tid}",
            json={"name": "Treino A2", "exercises": [{"name": "Remada"}]},
        )
        self.assertEqual(resp.json(), {"status": "updated"})
        templates = self.client.get("/templates").json()
        self.assertEqual([t["name"] for t in templates], ["Treino A2"])
        self.assertEqual(self.client.put("/templates/missing", json={"name": "x"}).status_code, 404)
        self.client.delete(f"/templates/{tid}")
        self.assertEqual(self.client.get("/templates").json(), [])

    def test_dashboard_calendar_and_names(self) -> None:
        self._template_id()
        self.client.post(
            "/workouts",
            json={
                "name": "Ficha B",
                "exercises": [{"name": "Remada", "sets": [{"reps": 8, "weight": 30, "completed": True}]}],
                "duration_minutes": 30,
            },
        )
        self.assertEqual(self.client.get("/stats/exercises").json(), ["Remada", "Supino"])

        dashboard = self.client.get("/stats/dashboard").json()
        self.assertEqual(dashboard["total_workouts"], 1)
        self.assertEqual(dashboard["last_workout"]["name"], "Ficha B")

        today = datetime.datetime.now(datetime.timezone.utc).date()
        calendar = self.client.get(
            "/stats/calendar", params={"year": today.year, "month": today.month}
        ).json()
        day = [d for d in calendar["days"] if d["day"] == today.day][0]
        self.assertEqual(day["label"], "B")
        self.assertEqual(self.client.get("/stats/calendar", params={"year": 2024, "month": 13}).status_code, 400)

        found = self.client.get("/stats/day", params={"date": today.isoformat()}).json()
        self.assertEqual([w["name"] for w in found], ["Ficha B"])


class CoachRouteTest(APITestCase):
    def test_streamed_reply_commits_history(self) -> None:
        resp = self.client.post("/coach/messages", json={"text": "Monte um treino"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.text, "Olá! Vamos treinar.")
        history = self.client.get("/coach/history").json()
        self.assertEqual([turn["role"] for turn in history], ["user", "model"])
        messages = self.client.get("/coach/messages").json()
        self.assertEqual(messages[-1]["text"], "Olá! Vamos treinar.")

    def test_empty_message_rejected(self) -> None:
        self.assertEqual(self.client.post("/coach/messages", json={"text": "  "}).status_code, 400)

    def test_initialize_resets(self) -> None:
        self.client.post("/coach/messages", json={"text": "oi"})
        self.client.post("/coach/initialize")
        self.assertEqual(self.client.get("/coach/history").json(), [])
        self.assertEqual(len(self.client.get("/coach/messages").json()), 1)

    def test_analyze_workout(self) -> None:
        wid = self.client.post(
            "/workouts", json={"name": "Ficha A", "exercises": [], "duration_minutes": 20}
        ).json()["id"]
        resp = self.client.post(f"/coach/analyze/{wid}")
        self.assertEqual(resp.json()["analysis"].count("\n"), 2)
        self.assertEqual(self.client.post("/coach/analyze/missing").status_code, 404)


class AuthRouteTest(APITestCase):
    require_auth = True

    def test_routes_require_session(self) -> None:
        self.assertEqual(self.client.get("/workouts").status_code, 401)
        resp = self.client.post(
            "/auth/signup", json={"email": "ana@example.com", "password": "segredo1"}
        )
        self.assertEqual(resp.status_code, 200)
        token = resp.json()["token"]
        headers = {"Authorization": f"Bearer {token}"}
        self.assertEqual(self.client.get("/workouts", headers=headers).json(), [])
        self.assertEqual(self.client.get("/setup", headers=headers).json()["screen"], "main")
        self.assertEqual(self.client.get("/auth/session", headers=headers).json()["email"], "ana@example.com")

        self.client.post("/auth/logout", headers=headers)
        self.assertEqual(self.client.get("/workouts", headers=headers).status_code, 401)

    def test_login_error_is_localized(self) -> None:
        resp = self.client.post(
            "/auth/login", json={"email": "ana@example.com", "password": "errada"}
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["detail"], translator.gettext("Wrong email or password."))

    def test_reset_flow(self) -> None:
        self.client.post("/auth/signup", json={"email": "bia@example.com", "password": "segredo1"})
        resp = self.client.post("/auth/reset/request", json={"email": "bia@example.com"})
        self.assertEqual(resp.status_code, 200)
        resp = self.client.post("/auth/reset/request", json={"email": "bia@example.com"})
        self.assertEqual(resp.status_code, 400)
        body = self.api.auth.outbox.fetch_for_address("bia@example.com")[-1]["body"]
        code = body.rsplit(":", 1)[1].strip()
        resp = self.client.post(
            "/auth/reset/verify", json={"email": "bia@example.com", "code": code}
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["email"], "bia@example.com")

    def test_setup_screen_without_session(self) -> None:
        self.assertEqual(self.client.get("/setup").json()["screen"], "auth")
        resp = self.client.post("/setup", json={"database_path": " "})
        self.assertEqual(resp.status_code, 400)


class CoachPerUserTest(APITestCase):
    require_auth = True

    def _sign_up(self, email: str) -> dict:
        token = self.client.post(
            "/auth/signup", json={"email": email, "password": "segredo1"}
        ).json()["token"]
        return {"Authorization": f"Bearer {token}"}

    def test_transcripts_are_private(self) -> None:
        ana = self._sign_up("ana@example.com")
        bia = self._sign_up("bia@example.com")
        self.client.post("/coach/messages", json={"text": "minha lesao no joelho"}, headers=ana)

        bia_texts = [m["text"] for m in self.client.get("/coach/messages", headers=bia).json()]
        self.assertNotIn("minha lesao no joelho", bia_texts)
        self.assertEqual(self.client.get("/coach/history", headers=bia).json(), [])
        self.assertEqual(len(self.client.get("/coach/history", headers=ana).json()), 2)

        self.client.post("/coach/messages", json={"text": "treino de costas"}, headers=bia)
        self.assertEqual(
            self.backend.calls[-1],
            [{"role": "user", "parts": [{"text": "treino de costas"}]}],
        )

    def test_initialize_resets_only_caller(self) -> None:
        ana = self._sign_up("ana@example.com")
        bia = self._sign_up("bia@example.com")
        self.client.post("/coach/messages", json={"text": "oi"}, headers=ana)
        self.client.post("/coach/messages", json={"text": "oi"}, headers=bia)
        self.client.post("/coach/initialize", headers=ana)
        self.assertEqual(self.client.get("/coach/history", headers=ana).json(), [])
        self.assertEqual(len(self.client.get("/coach/history", headers=bia).json()), 2)

    def test_busy_session_does_not_block_other_users(self) -> None:
        ana = self._sign_up("ana@example.com")
        bia = self._sign_up("bia@example.com")
        ana_session = self.api.auth.get_session(ana["Authorization"].split(" ", 1)[1])
        self.api.coach_for(ana_session).state = CoachState.STREAMING

        resp = self.client.post("/coach/messages", json={"text": "oi"}, headers=ana)
        self.assertEqual(resp.status_code, 409)
        resp = self.client.post("/coach/messages", json={"text": "oi"}, headers=bia)
        self.assertEqual(resp.status_code, 200)


class BackdatedWorkoutTest(APITestCase):
    def test_date_is_kept(self) -> None:
        resp = self.client.post(
            "/workouts",
            json={"name": "Ficha A", "date": "2024-03-05T10:00:00+00:00", "duration_minutes": 40},
        )
        wid = resp.json()["id"]
        self.assertEqual(self.client.get(f"/workouts/{wid}").json()["date"], "2024-03-05T10:00:00+00:00")
        found = self.client.get("/stats/day", params={"date": "2024-03-05"}).json()
        self.assertEqual([w["id"] for w in found], [wid])

    def test_bad_date_is_rejected(self) -> None:
        resp = self.client.post("/workouts", json={"name": "Ficha A", "date": "ontem"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(self.client.get("/workouts").json(), [])

    def test_remove_exercise(self) -> None:
        active = self.client.post("/sessions", params={"name": "Pernas"}).json()
        ex = self.client.post(
            f"/sessions/{active['id']}/exercises", params={"name": "Agachamento"}
        ).json()
        resp = self.client.delete(f"/sessions/{active['id']}/exercises/{ex['id']}")
        self.assertEqual(resp.json(), {"status": "deleted"})
        self.assertEqual(self.client.get(f"/sessions/{active['id']}").json()["exercises"], [])
        resp = self.client.delete(f"/sessions/{active['id']}/exercises/{ex['id']}")
        self.assertEqual(resp.status_code, 404)


class RateLimitTest(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.api = IronAPI(
            os.path.join(self.tmp.name, "workout.db"),
            os.path.join(self.tmp.name, "settings.yaml"),
            chat_backend=FakeBackend(),
            rate_limit=2,
        )
        self.client = TestClient(self.api.app)

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def test_third_request_in_window_is_refused(self) -> None:
        self.assertEqual(self.client.get("/health").status_code, 200)
        self.assertEqual(self.client.get("/health").status_code, 200)
        resp = self.client.get("/health")
        self.assertEqual(resp.status_code, 429)
        self.assertGreater(int(resp.headers["Retry-After"]), 0)

    def test_tokens_are_counted_separately(self) -> None:
        self.client.get("/health")
        self.client.get("/health")
        resp = self.client.get("/health", headers={"Authorization": "Bearer abc"})
        self.assertEqual(resp.status_code, 200)


if __name__ == "__main__":
    unittest.main()
