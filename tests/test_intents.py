import unittest

from artisan_buddy.intents import DEFAULT_INTENT, INTENT_PATTERNS, classify_intent


class ClassifyIntentTests(unittest.TestCase):
    def test_english_intents(self) -> None:
        cases = {
            "Show my sales for this month": "query_sales",
            "What products do I have in inventory": "query_products",
            "Tell me about government schemes for weavers": "query_schemes",
            "I want to add product photos": "create_product",
            "Take me to the dashboard": "navigation",
            "Find buyer for my pottery": "connect_buyer",
        }
        for message, expected in cases.items():
            self.assertEqual(expected, classify_intent(message).type, message)

    def test_hindi_and_tamil_intents(self) -> None:
        self.assertEqual("query_sales", classify_intent("मेरी बिक्री कितनी है").type)
        self.assertEqual("query_schemes", classify_intent("அரசு திட்டங்கள் பற்றி சொல்").type)

    def test_confidence_grows_with_matches(self) -> None:
        single = classify_intent("Show my sales")
        double = classify_intent("What products do I have in inventory")
        self.assertAlmostEqual(0.6, single.confidence)
        self.assertAlmostEqual(0.7, double.confidence)

    def test_confidence_is_capped(self) -> None:
        intent = classify_intent("sales revenue earnings sales report how much sold")
        self.assertEqual("query_sales", intent.type)
        self.assertAlmostEqual(0.8, intent.confidence)

    def test_unmatched_message_is_general_chat(self) -> None:
        intent = classify_intent("zzz qqq")
        self.assertEqual(DEFAULT_INTENT, intent.type)
        self.assertEqual(0.5, intent.confidence)
        self.assertEqual([], intent.entities)

    def test_every_intent_has_patterns(self) -> None:
        for intent_type, patterns in INTENT_PATTERNS.items():
            self.assertTrue(patterns, intent_type)

    def test_craft_knowledge_is_checked_before_creation_and_buyers(self) -> None:
        self.assertEqual("query_craft_knowledge", classify_intent("How to find a buyer").type)
        self.assertEqual("query_craft_knowledge", classify_intent("Which material for a new product").type)

    def test_unmatched_message_follows_the_newest_topic(self) -> None:
        intent = classify_intent("and last month?", ["query_products", "query_sales"])
        self.assertEqual("query_sales", intent.type)
        self.assertEqual(0.5, intent.confidence)

        self.assertEqual(DEFAULT_INTENT, classify_intent("and last month?", ["image_analysis"]).type)
        self.assertEqual(DEFAULT_INTENT, classify_intent("and last month?", []).type)
        self.assertEqual("query_schemes", classify_intent("any loans?", ["query_sales"]).type)
