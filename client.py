import requests
from typing import Iterator, Optional


class IronClient:
    """Simple REST client for the IronCoach API."""

    def __init__(self, base_url: str = "http://localhost:8000", token: Optional[str] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = requests.Session()
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def login(self, email: str, password: str) -> dict:
        resp = self.session.post(self._url("/auth/login"), json={"email": email, "password": password})
        resp.raise_for_status()
        data = resp.json()
        self.session.headers["Authorization"] = f"Bearer {data['token']}"
        return data

    def list_workouts(self) -> list:
        resp = self.session.get(self._url("/workouts"))
        resp.raise_for_status()
        return resp.json()

    def save_workout(self, name: str, exercises: list[dict], duration_minutes: int = 60) -> str:
        resp = self.session.post(
            self._url("/workouts"),
            json={"name": name, "exercises": exercises, "duration_minutes": duration_minutes},
        )
        resp.raise_for_status()
        return resp.json()["id"]

    def list_templates(self) -> list:
        resp = self.session.get(self._url("/templates"))
        resp.raise_for_status()
        return resp.json()

    def create_template(self, name: str, exercises: list[dict]) -> str:
        resp = self.session.post(self._url("/templates"), json={"name": name, "exercises": exercises})
        resp.raise_for_status()
        return resp.json()["id"]

    def exercise_history(self, exercise: str) -> dict:
        resp = self.session.get(self._url("/stats/history"), params={"exercise": exercise})
        resp.raise_for_status()
        return resp.json()

    def ask_coach(self, text: str) -> Iterator[str]:
        """Yield reply fragments as the server streams them."""
        with self.session.post(self._url("/coach/messages"), json={"text": text}, stream=True) as resp:
            resp.raise_for_status()
            for chunk in resp.iter_content(chunk_size=None, decode_unicode=True):
                if chunk:
                    yield chunk
