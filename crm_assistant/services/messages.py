"""Localized fixed replies."""

from typing import Dict

MESSAGES: Dict[str, Dict[str, str]] = {
    "generation_failed": {
        "en": "Sorry, something went wrong while preparing the answer. Please try again.",
        "sr": "Izvinite, došlo je do greške prilikom pripreme odgovora. Molimo pokušajte ponovo.",
    },
    "empty_response": {
        "en": "I couldn't produce an answer for that. Could you rephrase the question?",
        "sr": "Nisam uspeo da pripremim odgovor. Možete li preformulisati pitanje?",
    },
    "not_configured": {
        "en": "The assistant is not configured yet: no AI provider key is set. Please contact your administrator.",
        "sr": "Asistent još nije podešen: ključ AI provajdera nije postavljen. Obratite se administratoru.",
    },
}


def get_message(key: str, language: str = "en") -> str:
    """Message for the language, falling back to English."""
    variants = MESSAGES[key]
    return variants.get(language) or variants["en"]
