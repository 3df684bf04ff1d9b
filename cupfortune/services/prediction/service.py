"""Prediction service: turns cup photos plus subject context into fortune text.

Uses an OpenAI vision-capable chat model. Any upstream failure, and an empty
completion, surface as `PredictionError` so the orchestrator can mark the
fortune FAILED.
"""

from abc import ABC, abstractmethod

from openai import OpenAI, OpenAIError

from cupfortune.common.errors import PredictionError
from cupfortune.common.logging import logger


MAX_IMAGES = 4

PROMPT_TEMPLATE = """You are an experienced, careful and intuitive coffee-cup reader. Your tone is calm,
clear, respectful and encouraging. You read each cup as a personal story: no
exaggeration, no promises, only what the patterns show.

About the person:
- Name: {name}
- Age: {age}
- Intent of the reading: {intent}
- What they said about themselves: {about}

Write the reading in {language}, in flowing, well-ordered paragraphs.
First interpret the signs inside the cup: the inner, emotional view of the
person's past, present and choices. Then move to the saucer, where the signs
speak about their surroundings, gentle warnings and opportunities taking shape.

Name the exact position of every symbol you describe. Where the evidence
allows, suggest an approximate time for events (for example "within about three
months" or "in the near future"). Keep the language gently poetic but always
meaningful and easy to follow.

End with one complete, calming and inspiring closing sentence that leaves the
person seeing themselves and their path more clearly.
"""


def build_prompt(name: str, age: str, intent: str, about: str = "", language: str = "Persian") -> str:
    return PROMPT_TEMPLATE.format(
        name=name or "-",
        age=age or "-",
        intent=intent or "-",
        about=about or "-",
        language=language,
    )


def to_image_url(image: str) -> str:
    """Return a URL the model accepts: hosted URLs and data URLs pass through."""

    if image.startswith(("http://", "https://", "data:")):
        return image
    return f"data:image/jpeg;base64,{image}"


class PredictionService(ABC):
    @abstractmethod
    def predict(self, images: list[str], name: str, age: str, intent: str, about: str = "") -> str:
        raise NotImplementedError


class OpenAIPredictionService(PredictionService):
    def __init__(
        self,
        api_key: str,
        model: str,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        timeout_seconds: float = 90.0,
        language: str = "Persian",
    ) -> None:
        # Retries stay off: a failed reading becomes FAILED and the user resubmits.
        self.client = OpenAI(api_key=api_key, timeout=timeout_seconds, max_retries=0)
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.language = language

    def predict(self, images, name, age, intent, about=""):
        if not images:
            raise PredictionError("No images supplied for prediction")
        content: list[dict] = [
            {"type": "text", "text": build_prompt(name, age, intent, about, self.language)}
        ]
        for image in images[:MAX_IMAGES]:
            content.append({"type": "image_url", "image_url": {"url": to_image_url(image)}})

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": content}],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except OpenAIError as exc:
            logger.error("prediction_upstream_error model=%s error=%s", self.model, exc)
            raise PredictionError("Failed to generate fortune prediction", details=str(exc)) from exc

        text = (response.choices[0].message.content or "").strip() if response.choices else ""
        if not text:
            raise PredictionError("Failed to generate fortune prediction", details="empty completion")
        logger.info("prediction_generated model=%s images=%s chars=%s", self.model, len(content) - 1, len(text))
        return text
