import random


class Translator:
    def __init__(self, language: str = "pt-BR") -> None:
        self.language = language
        self.translations = {
            "en": {},
            "pt-BR": {
                "Hello! I am IronCoach. How can I help you reach your training goals today?": (
                    "Olá! Eu sou o IronCoach. Como posso ajudar você a atingir seus objetivos de treino hoje?"
                ),
                "Sorry, I ran into an error. Please try again.": (
                    "Desculpe, encontrei um erro. Por favor, tente novamente."
                ),
                "Great workout! Keep it consistent.": "Ótimo treino! Mantenha a consistência.",
                "Great effort logged!": "Grande esforço registrado!",
                "Name the workout (e.g. Ficha A, Chest, etc)": "Identifique o treino (ex: Ficha A, Peito, etc)",
                "Give the template a name.": "Dê um nome para a ficha.",
                "Add at least one exercise.": "Adicione pelo menos um exercício.",
                "Password should be at least 6 characters.": "A senha deve ter pelo menos 6 caracteres.",
                "Wrong email or password.": "Email ou senha incorretos.",
                "This email is already in use.": "Este email já está em uso.",
                "The code has expired. Request a new one.": "O código expirou. Solicite um novo.",
                "Invalid code. Check it and try again.": "Código inválido. Verifique e tente novamente.",
                "Email not confirmed. Check your inbox.": "Email não confirmado. Verifique sua caixa de entrada.",
                "Too many attempts. Wait a moment.": "Muitas tentativas. Aguarde um momento.",
                "For security reasons, wait a few moments before trying again.": (
                    "Por segurança, aguarde alguns instantes antes de tentar novamente."
                ),
                "Code sent! Check your email.": "Código enviado! Verifique seu email.",
                "Code verified! Signing in...": "Código verificado! Entrando...",
                "Account created! Signing in...": "Conta criada com sucesso! Entrando...",
                "Your IronCoach access code": "Seu código de acesso IronCoach",
                "Your code is": "Seu código é",
                "Great workout! You are getting stronger every day.": (
                    "Ótimo treino! Você está ficando mais forte a cada dia."
                ),
                "Mission accomplished! Rest is part of training too.": (
                    "Missão cumprida! O descanso também faz parte do treino."
                ),
                "Congratulations! Consistency is the secret to success.": (
                    "Parabéns! A consistência é o segredo do sucesso."
                ),
                "Workout finished! Be proud of your effort today.": (
                    "Treino finalizado! Orgulhe-se do seu esforço hoje."
                ),
                "One more in the books! Stay focused on your goals.": (
                    "Mais um para a conta! Continue focado nos seus objetivos."
                ),
                "Excellent work! Your body thanks you for the effort.": (
                    "Excelente trabalho! Seu corpo agradece o esforço."
                ),
                "Full focus! You are building your best version.": (
                    "Foco total! Você está construindo a sua melhor versão."
                ),
                "Nothing like the feeling of a job well done!": "Nada como a sensação de dever cumprido!",
                "Every rep counts. You were amazing today!": "Cada repetição conta. Hoje você foi incrível!",
            },
        }

    def set_language(self, lang: str) -> None:
        self.language = lang

    def gettext(self, key: str) -> str:
        return self.translations.get(self.language, {}).get(key, key)


translator = Translator()

GREETING = "Hello! I am IronCoach. How can I help you reach your training goals today?"
APOLOGY = "Sorry, I ran into an error. Please try again."

SUCCESS_MESSAGES = [
    "Great workout! You are getting stronger every day.",
    "Mission accomplished! Rest is part of training too.",
    "Congratulations! Consistency is the secret to success.",
    "Workout finished! Be proud of your effort today.",
    "One more in the books! Stay focused on your goals.",
    "Excellent work! Your body thanks you for the effort.",
    "Full focus! You are building your best version.",
    "Nothing like the feeling of a job well done!",
    "Every rep counts. You were amazing today!",
]

# Lowercase phrase found in an identity error -> user-facing message key.
AUTH_ERROR_PHRASES = [
    ("password should be at least 6 characters", "Password should be at least 6 characters."),
    ("invalid login credentials", "Wrong email or password."),
    ("user already registered", "This email is already in use."),
    ("token has expired", "The code has expired. Request a new one."),
    ("invalid token", "Invalid code. Check it and try again."),
    ("email not confirmed", "Email not confirmed. Check your inbox."),
    ("rate limit exceeded", "Too many attempts. Wait a moment."),
    ("security purposes", "For security reasons, wait a few moments before trying again."),
]


def translate_auth_error(message: str) -> str:
    """Map an identity-service error to a localized message.

    Unknown errors are returned unchanged.
    """
    lowered = message.lower()
    for phrase, key in AUTH_ERROR_PHRASES:
        if phrase in lowered:
            return translator.gettext(key)
    return message


def success_message() -> str:
    return translator.gettext(random.choice(SUCCESS_MESSAGES))
