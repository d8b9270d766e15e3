import asyncio
import json
import shutil
import unittest
from pathlib import Path
from uuid import uuid4

from artisan_buddy.models import ArtisanContext
from artisan_buddy.retrieval import NoneRetriever, RetrievedDocument, StaticRetriever, load_documents


PROJECT_ROOT = Path(__file__).resolve().parents[1]
CONTEXT = ArtisanContext.from_dict("artisan-1", {})


class StaticRetrieverTests(unittest.TestCase):
    def setUp(self) -> None:
        self._retriever = StaticRetriever(
            [
                RetrievedDocument(id="1", title="Silk care", content="store silk sarees away from sunlight"),
                RetrievedDocument(id="2", title="Pottery", content="clay firing temperature for terracotta"),
                RetrievedDocument(id="3", title="Saree pricing", content="price silk sarees by weight of zari"),
            ]
        )

    def test_ranks_by_term_overlap(self) -> None:
        docs = asyncio.run(self._retriever.retrieve("how to price silk sarees", CONTEXT))
        self.assertEqual(["3", "1"], [d.id for d in docs])
        self.assertGreater(docs[0].relevance, docs[1].relevance)
        self.assertLessEqual(docs[0].relevance, 1.0)

    def test_limit_and_no_match(self) -> None:
        self.assertEqual(1, len(asyncio.run(self._retriever.retrieve("silk sarees", CONTEXT, limit=1))))
        self.assertEqual([], asyncio.run(self._retriever.retrieve("bamboo", CONTEXT)))
        self.assertEqual([], asyncio.run(self._retriever.retrieve("a b", CONTEXT)))

    def test_punctuation_does_not_hide_terms(self) -> None:
        docs = asyncio.run(self._retriever.retrieve("Terracotta firing, clay?", CONTEXT))
        self.assertEqual(["2"], [d.id for d in docs])

        hindi = StaticRetriever([RetrievedDocument(id="h", title="साड़ी", content="रेशम साड़ी की देखभाल")])
        self.assertEqual(["h"], [d.id for d in asyncio.run(hindi.retrieve("रेशम साड़ी।", CONTEXT))])

    def test_none_retriever(self) -> None:
        self.assertEqual([], asyncio.run(NoneRetriever().retrieve("anything", CONTEXT)))


class LoadDocumentsTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp_dir = PROJECT_ROOT / ".test-artifacts" / f"kb-{uuid4().hex}"
        self._tmp_dir.mkdir(parents=True, exist_ok=True)

    def tearDown(self) -> None:
        shutil.rmtree(self._tmp_dir, ignore_errors=True)

    def test_loads_entries_and_skips_empty_ones(self) -> None:
        path = self._tmp_dir / "kb.json"
        path.write_text(
            json.dumps([{"id": "a", "title": "T", "content": "text"}, {"title": "no content"}, {"content": "x"}]),
            encoding="utf-8",
        )
        docs = load_documents(path)
        self.assertEqual(["a", "doc-2"], [d.id for d in docs])
        self.assertEqual("T", docs[0].title)

    def test_rejects_non_list(self) -> None:
        path = self._tmp_dir / "kb.json"
        path.write_text(json.dumps({"id": "a"}), encoding="utf-8")
        with self.assertRaises(ValueError):
            load_documents(path)
