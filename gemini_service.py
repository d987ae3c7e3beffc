"""
Coaching chat and workout analysis on top of the Gemini API.

``CoachingSession`` owns both transcripts: the visible message list and the
raw role/parts history sent to the model. Only one request may be in flight.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import AsyncIterator, Optional, Protocol

from google import genai
from google.genai import types

from localization import translator, GREETING, APOLOGY
from models import ChatMessage, WorkoutSession

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"

SYSTEM_INSTRUCTIONS = {
    "pt-BR": (
        "Você é o IronCoach, um treinador de elite de força e condicionamento físico.\n"
        "Seu objetivo é ajudar os usuários com suas rotinas de treino, dicas de execução e conselhos nutricionais.\n"
        "Seja conciso, motivador e baseie-se em dados.\n"
        "Responda sempre em Português do Brasil.\n"
        "Se o usuário pedir uma rotina, formate-a de forma limpa com marcadores (bullet points).\n"
        "Priorize sempre a segurança."
    ),
    "en": (
        "You are IronCoach, an elite strength and conditioning coach.\n"
        "Your goal is to help users with their training routines, technique tips and nutrition advice.\n"
        "Be concise, motivating and data-driven.\n"
        "If the user asks for a routine, format it cleanly with bullet points.\n"
        "Always prioritize safety."
    ),
}

ANALYSIS_PROMPTS = {
    "pt-BR": (
        "Analise este JSON de treino. Forneça 3 dicas principais curtas, diretas e motivadoras "
        "sobre o desempenho ou recuperação. Responda em Português do Brasil. NÃO use introduções "
        'como "Aqui estão as dicas". Apenas liste as 3 frases separadas por quebra de linha. JSON: '
    ),
    "en": (
        "Analyze this workout JSON. Give 3 short, direct and motivating tips about performance "
        'or recovery. Do NOT use introductions such as "Here are the tips". Just list the 3 '
        "sentences separated by line breaks. JSON: "
    ),
}


def system_instruction() -> str:
    return SYSTEM_INSTRUCTIONS.get(translator.language, SYSTEM_INSTRUCTIONS["en"])


class ChatBackend(Protocol):
    """Generative-text backend used by the coach."""

    def stream_chat(
        self, contents: list[dict], system_instruction: str
    ) -> AsyncIterator[str]:
        ...

    async def generate(self, prompt: str) -> str:
        ...


class GeminiBackend:
    """Gemini client using the async streaming API."""

    def __init__(self, api_key: Optional[str] = None, model: str = DEFAULT_MODEL) -> None:
        self.api_key = api_key
        self.model_name = model
        self._client: genai.Client | None = None

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def stream_chat(
        self, contents: list[dict], system_instruction: str
    ) -> AsyncIterator[str]:
        stream = await self.client.aio.models.generate_content_stream(
            model=self.model_name,
            contents=contents,
            config=types.GenerateContentConfig(system_instruction=system_instruction),
        )
        async for chunk in stream:
            if chunk.text:
                yield chunk.text

    async def generate(self, prompt: str) -> str:
        response = await self.client.aio.models.generate_content(
            model=self.model_name,
            contents=prompt,
        )
        return response.text or ""


class CoachState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"


class CoachBusyError(RuntimeError):
    """Raised when a message is sent while a reply is still streaming."""


class CoachingSession:
    def __init__(
        self,
        backend: ChatBackend,
        instruction: Optional[str] = None,
    ) -> None:
        self.backend = backend
        self.instruction = instruction
        self.state = CoachState.IDLE
        self._history: list[dict] = []
        self.messages: list[ChatMessage] = []
        self.reset_messages()

    @property
    def history(self) -> list[dict]:
        """Raw turns of every successful exchange, oldest first."""
        return [
            {"role": turn["role"], "parts": [dict(p) for p in turn["parts"]]}
            for turn in self._history
        ]

    def initialize(self) -> None:
        """Forget the model-side context. Visible messages are kept."""
        self._history = []

    def reset_messages(self) -> None:
        self.messages = [ChatMessage("model", translator.gettext(GREETING))]

    async def send(self, user_text: str) -> AsyncIterator[str]:
        """Send ``user_text`` and yield reply fragments as they arrive.

        On failure the apology text is yielded last and the raw history is
        left untouched.
        """
        if self.state is CoachState.STREAMING:
            raise CoachBusyError("a reply is already streaming")
        if not user_text or not user_text.strip():
            raise ValueError("message must not be empty")

        self.state = CoachState.STREAMING
        user_turn = {"role": "user", "parts": [{"text": user_text}]}
        self.messages.append(ChatMessage("user", user_text))
        placeholder = ChatMessage("model", "", is_thinking=True)
        self.messages.append(placeholder)
        full_response = ""
        try:
            contents = self.history + [user_turn]
            async for fragment in self.backend.stream_chat(
                contents, self.instruction or system_instruction()
            ):
                if not fragment:
                    continue
                full_response += fragment
                placeholder.text = full_response
                placeholder.is_thinking = False
                yield fragment
            placeholder.is_thinking = False
            self._history.append(user_turn)
            self._history.append({"role": "model", "parts": [{"text": full_response}]})
        except Exception as e:
            logger.error("Gemini API error: %s", e)
            placeholder.is_thinking = False
            apology = translator.gettext(APOLOGY)
            self.messages.append(ChatMessage("model", apology))
            yield apology
        finally:
            self.state = CoachState.IDLE

    async def reply(self, user_text: str) -> str:
        """Send ``user_text`` and return the concatenated reply."""
        return "".join([fragment async for fragment in self.send(user_text)])


async def analyze_workout(backend: ChatBackend, session: WorkoutSession) -> str:
    """Return three short coaching tips for a saved workout."""
    prompt = ANALYSIS_PROMPTS.get(translator.language, ANALYSIS_PROMPTS["en"])
    payload = json.dumps(session.to_dict(), ensure_ascii=False)
    try:
        text = await backend.generate(prompt + payload)
    except Exception as e:
        logger.error("Workout analysis failed: %s", e)
        return translator.gettext("Great effort logged!")
    return text or translator.gettext("Great workout! Keep it consistent.")
