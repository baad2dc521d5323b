"""
Main entry point for the shoe advisor.

    python main.py ask "Show me trail shoes with zero drop"
    python main.py ingest --sitemap-urls https://example.com/sitemap.xml
"""
import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from langchain_core.messages import BaseMessage, HumanMessage

from config import APP_CONFIG, get_config
from ingestion.ingest import ingest_documents
from models.configuration import ensure_configuration
from pipeline.graph import build_graph
from utils.errors import ConfigurationError, StoreUnavailable
from utils.llm import get_message_text

# Configure logging
logging.basicConfig(
    level=getattr(logging, APP_CONFIG["log_level"].upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)

_graphs: Dict[bool, Any] = {}


def get_graph(routed: bool = False):
    """Build each graph variant once per process."""
    if routed not in _graphs:
        _graphs[routed] = build_graph(routed=routed)
    return _graphs[routed]


async def answer_question(question: str, configurable: Optional[Dict[str, Any]] = None,
                          history: Optional[List[BaseMessage]] = None, routed: bool = False) -> Dict[str, Any]:
    """
    Run one conversational turn through the advisor graph.

    Args:
        question: The user's question
        configurable: Configuration overrides (user_id, retriever_provider, ...)
        history: Earlier messages of the conversation
        routed: Use the routing variant of the graph

    Returns:
        Final graph state; the answer is the last message
    """
    logger.info(f"Answering question: '{question}'")
    messages = list(history or []) + [HumanMessage(content=question.strip())]
    return await get_graph(routed).ainvoke(
        {"messages": messages},
        config={"configurable": configurable or {}}
    )


def _configurable_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    configurable: Dict[str, Any] = {}
    for name in ("user_id", "retriever_provider", "embedding_model", "vector_store_dir"):
        value = getattr(args, name, None)
        if value:
            configurable[name] = value
    if getattr(args, "sitemap_urls", None):
        configurable["sitemap_urls"] = args.sitemap_urls
    if getattr(args, "document_paths", None):
        configurable["document_paths"] = args.document_paths
    return configurable


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Shoe recommendation assistant")
    parser.add_argument("--user-id", dest="user_id")
    parser.add_argument("--retriever-provider", dest="retriever_provider",
                        choices=["local-memory", "local-file", "qdrant"])
    parser.add_argument("--embedding-model", dest="embedding_model")
    parser.add_argument("--vector-store-dir", dest="vector_store_dir")
    parser.add_argument("--sitemap-urls", dest="sitemap_urls", nargs="*", default=[])
    parser.add_argument("--document-paths", dest="document_paths", nargs="*", default=[])

    subparsers = parser.add_subparsers(dest="command", required=True)

    ask = subparsers.add_parser("ask", help="Ask a question")
    ask.add_argument("question")
    ask.add_argument("--routed", action="store_true", help="Let classifiers skip optional steps")

    subparsers.add_parser("ingest", help="Ingest configured documents and sitemaps")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configurable = _configurable_from_args(args)
    logger.info(f"System configured with: LLM={get_config()['llm']['model']}, "
                f"overrides={configurable}")

    try:
        if args.command == "ingest":
            configuration = ensure_configuration({"configurable": configurable})
            report = asyncio.run(ingest_documents(configuration))
            print(json.dumps(report, indent=2))
            return 0

        result = asyncio.run(answer_question(args.question, configurable, routed=args.routed))
        print(get_message_text(result["messages"][-1]))
        return 0
    except StoreUnavailable as e:
        print(str(e), file=sys.stderr)
        return 2
    except ConfigurationError as e:
        print(f"Configuration error: {str(e)}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
