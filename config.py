import os
import yaml
import keyring

from settings_schema import validate_settings

PLACEHOLDER_DB_PATHS = {"", "placeholder.db"}


class YamlConfig:
    """Load and save settings to a YAML file with optional encryption."""

    SENSITIVE_KEYS = {
        "gemini_api_key",
    }

    DEFAULTS = {
        "database_path": "workout.db",
        "gemini_model": "gemini-2.5-flash",
        "language": "pt-BR",
        "theme": "dark",
        "weight_unit": "kg",
    }

    def __init__(self, path: str = "settings.yaml") -> None:
        self.path = path
        self.encrypt = os.environ.get("ENCRYPT_SETTINGS") == "1"
        self.service = "ironcoach"

    def load(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if self.encrypt:
            for key in list(data.keys()):
                if key in self.SENSITIVE_KEYS:
                    secret = keyring.get_password(self.service, key)
                    if secret is not None:
                        data[key] = secret
                    else:
                        data.pop(key, None)
        return data

    def save(self, data: dict) -> None:
        out = dict(data)
        if self.encrypt:
            for key in self.SENSITIVE_KEYS:
                if key in out:
                    keyring.set_password(self.service, key, str(out[key]))
                    out[key] = True
        with open(self.path, "w", encoding="utf-8") as f:
            yaml.safe_dump(out, f)

    def resolved(self) -> dict:
        """Return defaults overlaid with the YAML file and environment."""
        data = dict(self.DEFAULTS)
        data.update(self.load())
        env_db = os.environ.get("WORKOUT_DB")
        if env_db:
            data["database_path"] = env_db
        env_key = os.environ.get("GEMINI_API_KEY") or os.environ.get("API_KEY")
        if env_key:
            data["gemini_api_key"] = env_key
        return data

    def update(self, **values) -> dict:
        data = self.load()
        data.update({k: v for k, v in values.items() if v is not None})
        validate_settings(data)
        self.save(data)
        return self.resolved()

    def is_backend_configured(self) -> bool:
        path = self.resolved().get("database_path")
        if not isinstance(path, str):
            return False
        return path.strip() not in PLACEHOLDER_DB_PATHS

    def toggle_theme(self) -> str:
        current = self.resolved().get("theme", "dark")
        theme = "light" if current == "dark" else "dark"
        self.update(theme=theme)
        return theme
