from __future__ import annotations

from artisan_buddy.models import Intent

# English, Hindi and Tamil trigger phrases per intent; first match in this order wins.
INTENT_PATTERNS: dict[str, list[str]] = {
    "navigation": [
        "go to", "take me to", "navigate to", "open", "visit",
        "जाओ", "खोलो", "दिखाओ",
        "செல்", "திற", "காட்டு",
    ],
    "query_profile": [
        "my profile", "my details", "about me", "my information",
        "मेरी प्रोफाइल", "मेरी जानकारी",
        "என் சுயவிவரம்",
    ],
    "query_products": [
        "my products", "product list", "what products", "show products", "inventory",
        "मेरे उत्पाद", "उत्पाद सूची",
        "என் தயாரிப்புகள்",
    ],
    "query_sales": [
        "sales", "revenue", "earnings", "how much sold", "sales report",
        "बिक्री", "आय", "कमाई",
        "விற்பனை", "வருமானம்",
    ],
    "query_schemes": [
        "schemes", "government schemes", "benefits", "subsidies", "loans",
        "योजनाएं", "सरकारी योजनाएं", "लाभ",
        "திட்டங்கள்", "அரசு திட்டங்கள்",
    ],
    "query_craft_knowledge": [
        "how to", "technique", "craft", "material", "learn", "tutorial",
        "कैसे करें", "तकनीक", "शिल्प", "सामग्री",
        "எப்படி", "நுட்பம்", "கைவினை",
    ],
    "create_product": [
        "create product", "add product", "new product", "list product",
        "उत्पाद बनाएं", "नया उत्पाद",
        "தயாரிப்பு உருவாக்கு",
    ],
    "connect_buyer": [
        "buyer", "customer", "connect with buyer", "find buyer",
        "खरीदार", "ग्राहक",
        "வாங்குபவர்", "வாடிக்கையாளர்",
    ],
    "help": [
        "help", "what can you do", "how to use", "guide", "support",
        "मदद", "सहायता", "गाइड",
        "உதவி", "வழிகாட்டி",
    ],
    "general_chat": [
        "hello", "hi", "hey", "thanks", "thank you", "bye", "goodbye",
        "नमस्ते", "धन्यवाद", "अलविदा",
        "வணக்கம்", "நன்றி",
    ],
}

DEFAULT_INTENT = "general_chat"


def classify_intent(message: str, recent_topics: list[str] | None = None) -> Intent:
    """Keyword match in ``INTENT_PATTERNS`` order.

    With no keyword match, the newest entry of ``recent_topics`` carries the
    conversation on when it names a known intent; otherwise it is general chat.
    """
    lowered = message.lower().strip()
    for intent_type, patterns in INTENT_PATTERNS.items():
        if any(p.lower() in lowered for p in patterns):
            return Intent(type=intent_type, confidence=_confidence(lowered, intent_type))
    if recent_topics and recent_topics[-1] in INTENT_PATTERNS:
        return Intent(type=recent_topics[-1], confidence=0.5)
    return Intent(type=DEFAULT_INTENT, confidence=0.5)


def _confidence(lowered: str, intent_type: str) -> float:
    matches = sum(1 for p in INTENT_PATTERNS[intent_type] if p.lower() in lowered)
    return min(1.0, 0.5 + min(0.3, matches * 0.1))
