"""Nutrition inference - reads calorie and macro figures out of the assistant's reply."""

import logging
import re

from chatstream.services.background.base import Fact, FactExtractor, FactSet, PostProcessingJob

logger = logging.getLogger(__name__)

NUTRITION_KEYWORDS = (
    "calories", "protein", "carbs", "carbohydrates", "fat", "fiber", "sugar", "sodium",
    "kcal", "nutrition", "nutrients", "macros", "ate", "eating", "meal", "food",
    "breakfast", "lunch", "dinner", "snack",
)

_NUMBER = r"(\d+(?:\.\d+)?)"
_GRAMS = r"\s*(?:grams?|g)\s*(?:of\s+)?"

PATTERNS = {
    "calories": re.compile(_NUMBER + r"\s*(?:calories|kcal|cal)\b", re.IGNORECASE),
    "protein": re.compile(_NUMBER + _GRAMS + r"protein", re.IGNORECASE),
    "carbs": re.compile(_NUMBER + _GRAMS + r"(?:carbs|carbohydrates)", re.IGNORECASE),
    "fat": re.compile(_NUMBER + _GRAMS + r"fat", re.IGNORECASE),
    "fiber": re.compile(_NUMBER + _GRAMS + r"fiber", re.IGNORECASE),
    "sugar": re.compile(_NUMBER + _GRAMS + r"sugar", re.IGNORECASE),
    "sodium": re.compile(_NUMBER + r"\s*(?:mg|milligrams?)\s*(?:of\s+)?sodium", re.IGNORECASE),
}

# upper bounds for a single meal, anything above is a parsing accident
LIMITS = {
    "calories": 10000, "protein": 1000, "carbs": 1000, "fat": 1000,
    "fiber": 200, "sugar": 500, "sodium": 10000,
}

MEAL_TYPES = ("breakfast", "lunch", "dinner", "snack")
_USER_FIGURES = ("calories", "protein", "carbs", "fat")
_ESTIMATE_WORDS = ("approximately", "estimated", "roughly", "about")


def contains_nutrition_content(text: str) -> bool:
    lower = text.lower()
    return any(keyword in lower for keyword in NUTRITION_KEYWORDS)


def parse_nutrition_values(text: str) -> dict[str, float]:
    values = {}
    for nutrient, pattern in PATTERNS.items():
        match = pattern.search(text)
        if match:
            value = float(match.group(1))
            if 0 <= value <= LIMITS[nutrient]:
                values[nutrient] = value
    return values


class NutritionExtractor(FactExtractor):
    name = "nutrition"

    async def extract(self, job: PostProcessingJob) -> FactSet:
        if not contains_nutrition_content(job.assistant_text):
            return FactSet()

        values = parse_nutrition_values(job.assistant_text)
        if not values:
            return FactSet()

        user_lower = job.user_text.lower()
        combined = f"{job.assistant_text} {job.user_text}".lower()
        user_provided = any(word in user_lower for word in _USER_FIGURES)

        if user_provided:
            confidence, source = "high", "user_provided"
        elif job.has_attachments:
            confidence, source = "medium", "photo_analysis"
        elif any(word in job.assistant_text.lower() for word in _ESTIMATE_WORDS):
            confidence, source = "medium", "ai_inferred"
        else:
            confidence, source = "low", "ai_inferred"

        meal_type = next((meal for meal in MEAL_TYPES if meal in combined), None)

        parts = [f"{values['calories']:g} kcal"] if "calories" in values else []
        parts += [f"{values[n]:g}g {n}" for n in ("protein", "carbs", "fat") if n in values]
        summary = f"{meal_type or 'meal'}: {', '.join(parts) or 'nutrition logged'}"

        logger.info(f"Nutrition inferred for {job.conversation_id}: {summary} ({confidence})")
        return FactSet([
            Fact(
                kind="nutrition",
                summary=summary,
                category=meal_type or "meal",
                importance={"high": 0.9, "medium": 0.6, "low": 0.3}[confidence],
                data={**values, "confidence": confidence, "source": source, "meal_type": meal_type},
            )
        ])
