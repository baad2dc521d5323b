"""
Tests for the LangGraph pipeline components.
"""
import unittest
import sys
import os
import shutil
import tempfile
from unittest.mock import AsyncMock, MagicMock, patch
import logging

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage
from langchain_core.runnables import RunnableLambda

# Add parent directory to path to allow imports
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from fakes import KeywordEmbeddings, make_doc, seeded_database
from models.conditions import RangeSpec, SearchQuery, ShoeSearchConditions
from models.configuration import Configuration
from pipeline.graph import build_graph
from pipeline.query_builder import build_query
from pipeline.query_generation import generate_query
from pipeline.response_generation import _generate_fallback_response, respond
from pipeline.retrieval import retrieve
from pipeline.routing import is_yes, should_lookup_shoe, should_retrieve_docs
from pipeline.shoe_data import fetch_shoe_data, translate
from utils.errors import StoreUnavailable, TranslationFailure
from utils.formatting import NO_SHOES_MESSAGE, format_docs, format_shoe_data, render_template
from vectordb import index as index_module
from vectordb import vector_store as vector_store_module
from vectordb.vector_store import open_vector_store
import main

# Disable logging during tests
logging.disable(logging.CRITICAL)

ZERO_DROP_TRAIL = ShoeSearchConditions(drop=RangeSpec(min=0, max=0), intended_use="trail")


def structured_model(output):
    """Chat model double whose structured output is fixed, or raises when output is an exception."""
    calls = []

    def run(value):
        calls.append(value)
        if isinstance(output, Exception):
            raise output
        return output

    model = MagicMock()
    model.with_structured_output.return_value = RunnableLambda(run)
    model.calls = calls
    return model


def chat_model(reply):
    """Chat model double answering every prompt with a fixed text, or a callable of the input."""
    def run(value):
        if isinstance(reply, Exception):
            raise reply
        text = reply(value) if callable(reply) else reply
        return AIMessage(content=text)

    return RunnableLambda(run)


class TestTranslate(unittest.IsolatedAsyncioTestCase):
    """Tests for structured condition extraction."""

    async def test_translate_returns_conditions(self):
        """Test that model output is returned as validated conditions."""
        model = structured_model(ZERO_DROP_TRAIL)

        conditions = await translate("zero drop trail shoes", model)

        self.assertEqual(conditions.range_for("drop").max, 0)
        self.assertEqual(conditions.text_for("intended_use"), "trail")
        model.with_structured_output.assert_called_once_with(ShoeSearchConditions)

    async def test_translate_validates_dict_output(self):
        """Test that raw dictionaries are validated against the schema."""
        conditions = await translate("shoes", structured_model({"gender": "women's", "limit": 2}))

        self.assertEqual(conditions.text_for("gender"), "women")
        self.assertEqual(conditions.limit, 2)

    async def test_translate_failures(self):
        """Test that call errors and unusable output raise TranslationFailure."""
        for output in (RuntimeError("quota exceeded"), None, {"drop": {"sort": "sideways"}}):
            with self.subTest(output=output):
                with self.assertRaises(TranslationFailure):
                    await translate("shoes", structured_model(output))


class TestFetchShoeData(unittest.IsolatedAsyncioTestCase):
    """Tests for the shoe database lookup node."""

    def setUp(self):
        self.database = seeded_database()
        self.config = {"configurable": {"shoe_database": self.database}}

    def tearDown(self):
        self.database.dispose()

    @patch('pipeline.shoe_data.load_chat_model')
    async def test_fetch_with_conditions(self, mock_load):
        """Test lookup of shoes from translated conditions."""
        mock_load.return_value = structured_model(ZERO_DROP_TRAIL)
        state = {"messages": [HumanMessage(content="zero drop trail shoes")]}

        result = await fetch_shoe_data(state, self.config)

        self.assertEqual([shoe["model"] for shoe in result["relevant_shoes"]],
                         ["Lone Peak 9", "King MT 2", "Timp 5", "Olympus 6"])
        self.assertEqual(result["relevant_shoes"][0]["drop_mm"], 0)

    @patch('pipeline.shoe_data.load_chat_model')
    async def test_fetch_falls_back_to_keywords(self, mock_load):
        """Test keyword fallback when translation fails."""
        mock_load.return_value = structured_model(RuntimeError("model unavailable"))
        state = {"messages": [HumanMessage(content="anything for racing?")]}

        result = await fetch_shoe_data(state, self.config)

        self.assertEqual([shoe["model"] for shoe in result["relevant_shoes"]], ["Vanish Carbon 2"])

    @patch('pipeline.shoe_data.load_chat_model')
    async def test_fetch_when_model_cannot_be_built(self, mock_load):
        """Test keyword fallback when the query model cannot even be constructed."""
        mock_load.side_effect = ValueError("GOOGLE_API_KEY is not set")
        state = {"messages": [HumanMessage(content="anything for racing?")]}

        result = await fetch_shoe_data(state, self.config)

        self.assertEqual([shoe["model"] for shoe in result["relevant_shoes"]], ["Vanish Carbon 2"])

    @patch('pipeline.shoe_data.build_query', wraps=build_query)
    @patch('pipeline.shoe_data.load_chat_model')
    async def test_fetch_with_configured_drop_strategy(self, mock_load, mock_build):
        """Test that the configured drop strategy reaches the query builder."""
        mock_load.return_value = structured_model(ZERO_DROP_TRAIL)
        state = {"messages": [HumanMessage(content="zero drop trail shoes")]}
        config = {"configurable": {"shoe_database": self.database, "drop_strategy": "enumerate"}}

        result = await fetch_shoe_data(state, config)

        self.assertEqual(mock_build.call_args.args[1], "enumerate")
        self.assertEqual([shoe["model"] for shoe in result["relevant_shoes"]],
                         ["Lone Peak 9", "King MT 2", "Timp 5", "Olympus 6"])

    @patch('pipeline.shoe_data.load_chat_model')
    async def test_fetch_skips_non_user_turns(self, mock_load):
        """Test that assistant turns do not trigger a lookup."""
        state = {"messages": [HumanMessage(content="trail shoes"), AIMessage(content="Here you go")]}

        result = await fetch_shoe_data(state, self.config)

        self.assertEqual(result, {"relevant_shoes": []})
        mock_load.assert_not_called()

    @patch('pipeline.shoe_data.load_chat_model')
    async def test_fetch_without_conditions(self, mock_load):
        """Test that an empty condition set returns no shoes."""
        mock_load.return_value = structured_model(ShoeSearchConditions())
        state = {"messages": [HumanMessage(content="hello there")]}

        result = await fetch_shoe_data(state, self.config)

        self.assertEqual(result["relevant_shoes"], [])

    @patch('pipeline.shoe_data.load_chat_model')
    async def test_fetch_database_error(self, mock_load):
        """Test that a broken database yields no shoes."""
        mock_load.return_value = structured_model(ZERO_DROP_TRAIL)
        state = {"messages": [HumanMessage(content="zero drop trail shoes")]}
        empty_dir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, empty_dir, True)
        config = {"configurable": {"database_url": f"sqlite:///{os.path.join(empty_dir, 'missing.db')}"}}

        result = await fetch_shoe_data(state, config)

        self.assertEqual(result["relevant_shoes"], [])


class TestGenerateQuery(unittest.IsolatedAsyncioTestCase):
    """Tests for search query generation."""

    @patch('pipeline.query_generation.load_chat_model')
    async def test_generate_query(self, mock_load):
        """Test that the generated query is appended."""
        model = structured_model(SearchQuery(query="zero drop trail shoe reviews"))
        mock_load.return_value = model
        state = {"messages": [HumanMessage(content="Tell me about zero drop")], "queries": []}

        result = await generate_query(state, {})

        self.assertEqual(result, {"queries": ["zero drop trail shoe reviews"]})
        system_message = model.calls[0][0]
        self.assertIsInstance(system_message, SystemMessage)
        self.assertIn("Tell me about zero drop", system_message.content)
        self.assertIn(NO_SHOES_MESSAGE, system_message.content)

    @patch('pipeline.query_generation.load_chat_model')
    async def test_generate_query_fallback(self, mock_load):
        """Test fallback to the user's message when the model fails."""
        mock_load.return_value = structured_model(RuntimeError("timeout"))
        state = {"messages": [HumanMessage(content="Best wide trail shoes?")]}

        result = await generate_query(state, {})

        self.assertEqual(result, {"queries": ["Best wide trail shoes?"]})

    @patch('pipeline.query_generation.load_chat_model')
    async def test_generate_query_when_model_cannot_be_built(self, mock_load):
        """Test fallback to the user's message when the model cannot be constructed."""
        mock_load.side_effect = ValueError("OPENAI_API_KEY is not set")
        state = {"messages": [HumanMessage(content="Best wide trail shoes?")]}

        result = await generate_query(state, {})

        self.assertEqual(result, {"queries": ["Best wide trail shoes?"]})

    async def test_generate_query_without_messages(self):
        """Test that an empty conversation produces no query."""
        self.assertEqual(await generate_query({"messages": []}, {}), {"queries": []})


class TestRetrieve(unittest.IsolatedAsyncioTestCase):
    """Tests for the document retrieval node."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.embeddings = KeywordEmbeddings(["zero", "drop", "wide", "toe"])
        self.configurable = {
            "user_id": "alice",
            "retriever_provider": "local-memory",
            "vector_store_dir": self.temp_dir,
            "embedding_model": "huggingface/keyword-test",
            "recency_weight": 0,
        }

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)
        vector_store_module._memory_stores.clear()
        index_module._memory_files.clear()

    async def _ingest(self, *docs):
        store = await open_vector_store(Configuration(**self.configurable), embeddings=self.embeddings)
        await store.add_documents(list(docs))

    async def test_retrieve_uses_latest_query(self):
        """Test retrieval of documents for the most recent query."""
        await self._ingest(make_doc("zero drop basics", user_id="alice"),
                           make_doc("wide toe box fitting", user_id="alice"))
        state = {"messages": [HumanMessage(content="hi")], "queries": ["wide toe", "zero drop"]}

        with patch('vectordb.vector_store.resolve_embeddings', return_value=self.embeddings):
            result = await retrieve(state, {"configurable": self.configurable})

        self.assertEqual([doc.page_content for doc in result["retrieved_docs"]], ["zero drop basics"])

    async def test_retrieve_before_ingestion(self):
        """Test that a missing store is reported, not masked."""
        state = {"messages": [HumanMessage(content="zero drop")], "queries": ["zero drop"]}

        with patch('vectordb.vector_store.resolve_embeddings', return_value=self.embeddings):
            with self.assertRaises(StoreUnavailable):
                await retrieve(state, {"configurable": self.configurable})


class TestRespond(unittest.IsolatedAsyncioTestCase):
    """Tests for response generation."""

    @patch('pipeline.response_generation.load_chat_model')
    async def test_respond(self, mock_load):
        """Test that the answer sees shoes and documents in its system prompt."""
        seen = []

        def reply(messages):
            seen.extend(messages)
            return "The Lone Peak 9 is a zero drop trail shoe."

        mock_load.return_value = chat_model(reply)
        state = {
            "messages": [HumanMessage(content="zero drop trail?")],
            "relevant_shoes": [{"brand": "Altra", "model": "Lone Peak 9", "drop_mm": 0}],
            "retrieved_docs": [make_doc("Zero drop review", source="https://example.com/review", title="Review")],
        }

        result = await respond(state, {})

        self.assertEqual(len(result["messages"]), 1)
        self.assertIsInstance(result["messages"][0], AIMessage)
        self.assertIn("Lone Peak 9", result["messages"][0].content)
        self.assertIn("## Altra Lone Peak 9", seen[0].content)
        self.assertIn("<document source=https://example.com/review title=Review>", seen[0].content)

    @patch('pipeline.response_generation.load_chat_model')
    async def test_respond_fallback(self, mock_load):
        """Test the plain summary when the model fails."""
        mock_load.return_value = chat_model(RuntimeError("service down"))
        state = {
            "messages": [HumanMessage(content="zero drop trail?")],
            "relevant_shoes": [{"brand": "Altra", "model": "Lone Peak 9", "drop_mm": 0.0}],
            "retrieved_docs": [make_doc("review", source="https://example.com/review")],
        }

        result = await respond(state, {})

        content = result["messages"][0].content
        self.assertIn("**Altra Lone Peak 9** (0mm drop)", content)
        self.assertIn("https://example.com/review", content)

    @patch('pipeline.response_generation.load_chat_model')
    async def test_respond_when_model_cannot_be_built(self, mock_load):
        """Test the plain summary when the model cannot be constructed."""
        mock_load.side_effect = ValueError("GOOGLE_API_KEY is not set")
        state = {
            "messages": [HumanMessage(content="zero drop trail?")],
            "relevant_shoes": [{"brand": "Altra", "model": "Lone Peak 9", "drop_mm": 0.0}],
            "retrieved_docs": [],
        }

        result = await respond(state, {})

        self.assertEqual(len(result["messages"]), 1)
        self.assertIn("**Altra Lone Peak 9** (0mm drop)", result["messages"][0].content)

    def test_fallback_without_results(self):
        """Test the fallback text when nothing was found."""
        self.assertIn("rephrasing", _generate_fallback_response([], []))


class TestFormatting(unittest.TestCase):
    """Tests for prompt formatting helpers."""

    def test_format_docs(self):
        self.assertEqual(format_docs([]), "<documents></documents>")
        formatted = format_docs([make_doc("Body", source="a.docx", title="a", content_hash="x")])
        self.assertEqual(formatted, "<documents>\n<document source=a.docx title=a>\nBody\n</document>\n</documents>")

    def test_format_shoe_data(self):
        self.assertEqual(format_shoe_data([]), NO_SHOES_MESSAGE)
        text = format_shoe_data([{
            "brand": "Topo", "model": "MTN Racer 3", "forefoot_stack_height_mm": 28,
            "heel_stack_height_mm": 33, "drop_mm": 5, "fit": "wide toe box",
            "genders": [{"gender": "men", "price": 150, "price_rrp": 170, "weight_grams": 300}],
            "reviews": [{"fit": "Roomy", "feel": None, "durability": None, "source_url": None}],
        }])
        self.assertIn("## Topo MTN Racer 3", text)
        self.assertIn("- Drop: 5mm", text)
        self.assertIn("- men version, RRP: $170, Current Price: $150, Weight: 300g", text)
        self.assertIn("- Fit: Roomy", text)

    def test_render_template_keeps_other_braces(self):
        self.assertEqual(render_template("{shoes} {json: 1}", shoes="none"), "none {json: 1}")


class TestRouting(unittest.IsolatedAsyncioTestCase):
    """Tests for the routing classifiers."""

    def test_is_yes(self):
        self.assertTrue(is_yes(" Yes."))
        self.assertFalse(is_yes("Yes, probably"))
        self.assertFalse(is_yes(""))

    @patch('pipeline.routing.load_chat_model')
    async def test_lookup_routing(self, mock_load):
        """Test routing to the shoe lookup on a YES."""
        state = {"messages": [HumanMessage(content="zero drop trail shoes")]}

        mock_load.return_value = chat_model("YES")
        self.assertEqual(await should_lookup_shoe(state, {}), "fetch_shoe_data")

        mock_load.return_value = chat_model("NO")
        self.assertEqual(await should_lookup_shoe(state, {}), "generate_query")

    @patch('pipeline.routing.load_chat_model')
    async def test_lookup_routing_on_error(self, mock_load):
        """Test that a failed classifier takes the cheaper path."""
        mock_load.return_value = chat_model(RuntimeError("rate limited"))
        state = {"messages": [HumanMessage(content="zero drop trail shoes")]}

        self.assertEqual(await should_lookup_shoe(state, {}), "generate_query")

    @patch('pipeline.routing.load_chat_model')
    async def test_routing_when_model_cannot_be_built(self, mock_load):
        """Test that both classifiers take the cheaper path without a usable model."""
        mock_load.side_effect = ValueError("GOOGLE_API_KEY is not set")
        state = {"messages": [HumanMessage(content="zero drop trail shoes")], "relevant_shoes": []}

        self.assertEqual(await should_lookup_shoe(state, {}), "generate_query")
        self.assertEqual(await should_retrieve_docs(state, {}), "respond")

    @patch('pipeline.routing.load_chat_model')
    async def test_retrieval_routing(self, mock_load):
        """Test routing after the shoe lookup."""
        state = {"messages": [HumanMessage(content="how do they fit?")], "relevant_shoes": []}

        mock_load.return_value = chat_model("yes")
        self.assertEqual(await should_retrieve_docs(state, {}), "generate_query")

        mock_load.return_value = chat_model("No.")
        self.assertEqual(await should_retrieve_docs(state, {}), "respond")

    async def test_routing_without_user_turn(self):
        """Test that non-user turns skip the classifiers."""
        state = {"messages": [AIMessage(content="Anything else?")]}

        self.assertEqual(await should_lookup_shoe(state, {}), "generate_query")
        self.assertEqual(await should_retrieve_docs(state, {}), "respond")


class TestGraph(unittest.IsolatedAsyncioTestCase):
    """End-to-end runs of the compiled graph with model doubles."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.database = seeded_database()
        self.embeddings = KeywordEmbeddings(["zero", "drop", "trail", "wide"])
        self.configurable = {
            "user_id": "alice",
            "retriever_provider": "local-memory",
            "vector_store_dir": self.temp_dir,
            "embedding_model": "huggingface/keyword-test",
            "recency_weight": 0,
            "shoe_database": self.database,
        }
        patches = [
            patch('pipeline.shoe_data.load_chat_model', return_value=structured_model(ZERO_DROP_TRAIL)),
            patch('pipeline.query_generation.load_chat_model',
                  return_value=structured_model(SearchQuery(query="zero drop trail"))),
            patch('pipeline.response_generation.load_chat_model', return_value=chat_model(self._answer)),
            patch('vectordb.vector_store.resolve_embeddings', return_value=self.embeddings),
        ]
        for p in patches:
            p.start()
            self.addCleanup(p.stop)

    def tearDown(self):
        self.database.dispose()
        shutil.rmtree(self.temp_dir, ignore_errors=True)
        vector_store_module._memory_stores.clear()
        index_module._memory_files.clear()
        main._graphs.clear()

    @staticmethod
    def _answer(messages):
        system = messages[0].content
        shoes = "Lone Peak 9" in system
        docs = "zero drop guide" in system
        return f"shoes={shoes} docs={docs}"

    async def _ingest(self):
        configuration = Configuration(**{k: v for k, v in self.configurable.items() if k != "shoe_database"})
        store = await open_vector_store(configuration, embeddings=self.embeddings)
        await store.add_documents([make_doc("zero drop guide for trail running", user_id="alice")])

    async def test_full_graph(self):
        """Test the fixed path through every node."""
        await self._ingest()

        result = await build_graph().ainvoke(
            {"messages": [HumanMessage(content="zero drop trail shoes")]},
            config={"configurable": self.configurable}
        )

        self.assertEqual(result["messages"][-1].content, "shoes=True docs=True")
        self.assertEqual(result["queries"], ["zero drop trail"])
        self.assertEqual(len(result["relevant_shoes"]), 4)
        self.assertEqual(len(result["retrieved_docs"]), 1)

    async def test_full_graph_without_store(self):
        """Test that a missing store surfaces as StoreUnavailable."""
        with self.assertRaises(StoreUnavailable):
            await build_graph().ainvoke(
                {"messages": [HumanMessage(content="zero drop trail shoes")]},
                config={"configurable": self.configurable}
            )

    @patch('pipeline.routing.load_chat_model')
    async def test_routed_graph_skips_lookup(self, mock_load):
        """Test that a NO from the lookup classifier skips the database."""
        mock_load.return_value = chat_model("NO")
        await self._ingest()

        result = await build_graph(routed=True).ainvoke(
            {"messages": [HumanMessage(content="what is zero drop?")]},
            config={"configurable": self.configurable}
        )

        self.assertEqual(result["messages"][-1].content, "shoes=False docs=True")
        self.assertNotIn("relevant_shoes", result)

    @patch('pipeline.routing.load_chat_model')
    async def test_routed_graph_skips_retrieval(self, mock_load):
        """Test answering from the database alone."""
        answers = iter(["YES", "NO"])
        mock_load.side_effect = lambda identifier: chat_model(next(answers))

        result = await build_graph(routed=True).ainvoke(
            {"messages": [HumanMessage(content="zero drop trail shoes")]},
            config={"configurable": self.configurable}
        )

        self.assertEqual(result["messages"][-1].content, "shoes=True docs=False")
        self.assertNotIn("retrieved_docs", result)

    async def test_answer_question(self):
        """Test the entry point used by the command line."""
        await self._ingest()

        result = await main.answer_question("  zero drop trail shoes  ", self.configurable)

        self.assertEqual(result["messages"][0].content, "zero drop trail shoes")
        self.assertEqual(result["messages"][-1].content, "shoes=True docs=True")


class TestCommandLine(unittest.TestCase):
    """Tests for the command line entry point."""

    @patch('builtins.print')
    @patch('main.answer_question', new_callable=AsyncMock)
    def test_ask_without_store(self, mock_answer, mock_print):
        mock_answer.side_effect = StoreUnavailable("Vector store not found. Please run the ingestion first.")

        self.assertEqual(main.main(["--user-id", "alice", "ask", "zero drop?"]), 2)
        self.assertEqual(mock_answer.call_args.args[1], {"user_id": "alice"})

    @patch('builtins.print')
    @patch('main.ingest_documents', new_callable=AsyncMock)
    def test_ingest(self, mock_ingest, mock_print):
        mock_ingest.return_value = {"urls_added": 2}

        code = main.main(["--sitemap-urls", "https://example.com/sitemap.xml", "ingest"])

        self.assertEqual(code, 0)
        configuration = mock_ingest.call_args.args[0]
        self.assertEqual(configuration.sitemap_urls, ("https://example.com/sitemap.xml",))
        self.assertIn('"urls_added": 2', mock_print.call_args.args[0])

    @patch('builtins.print')
    def test_invalid_configuration(self, mock_print):
        self.assertEqual(main.main(["--user-id", " ", "ingest"]), 1)


if __name__ == '__main__':
    unittest.main()
