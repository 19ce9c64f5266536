from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration."""

    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    model: str = "gpt-4o-mini"
    temperature: float = 0.0
    openai_api_key: str | None = None
    openai_base_url: str | None = "https://api.openai.com/v1"
    request_timeout_seconds: float = 60.0

    cors_origins: str = "*"

    redis_url: str | None = None
    session_retention_seconds: int = 3600  # 1 hour, counted from creation
    max_attempts: int = 5

    question_generator_system_prompt: str = (
        "Given a context passage (and optionally any previous question/feedback "
        "in the history), generate exactly one clear, context-based question.\n"
        "Output must be a single question sentence with no numbering."
    )

    evaluator_system_prompt: str = (
        "You are a grading assistant.\n"
        "You receive, in the conversation history, three key pieces of information:\n"
        "1) The original context passage (from the user).\n"
        "2) The question that was asked.\n"
        "3) The student's answer to that question.\n\n"
        "Your job is to compare the student's answer against the context + question, "
        "then decide:\n"
        '- If the answer is correct (in context), set "score" to "pass" and feedback '
        'to a short encouraging message (e.g., "Correct!").\n'
        '- If the answer is incomplete or incorrect, set "score" to '
        '"needs_improvement" and feedback to a concise explanation of what\'s '
        "missing or wrong.\n\n"
        "Always return a JSON object matching this schema exactly:\n"
        '{"feedback": string, "score": "pass" | "needs_improvement"}\n\n'
        'Never say "pass" on the very first run without actually evaluating. '
        "Keep your feedback focused on how the student can improve if needed."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        extra="allow",
    )


def get_settings() -> Settings:
    """Return the application settings singleton (loaded from env / .env)."""
    global _SETTINGS
    try:
        return _SETTINGS
    except NameError:
        _SETTINGS = Settings()
        return _SETTINGS
