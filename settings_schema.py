from typing import Literal

from pydantic import BaseModel, ValidationError


class SettingsSchema(BaseModel):
    database_path: str = "workout.db"
    gemini_api_key: str | bool | None = None
    gemini_model: str = "gemini-2.5-flash"
    language: Literal["pt-BR", "en"] = "pt-BR"
    theme: Literal["dark", "light"] = "dark"
    weight_unit: Literal["kg", "lb"] = "kg"


def validate_settings(data: dict) -> None:
    try:
        SettingsSchema(**data)
    except ValidationError as e:
        raise ValueError(str(e))
