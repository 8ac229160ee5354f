"""Command line entry point for the news writer."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

import requests

from newswriter.config import ARTICLES_FILENAME, CONFIG_DIR, Config, ConfigOverrides, init_config_dir
from newswriter.errors import ConfigurationError
from newswriter.services.agents import AgentManager
from newswriter.services.fetcher import ContentFetcher
from newswriter.services.processor import ArticleProcessor

API_KEY_ENV = "OPENAI_API_KEY"

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_USAGE = 2

FIRST_RUN_MESSAGE = """\
Welcome to news-writer! Configuration files have been created in {config_dir}

Configuration files:
  {articles}  - Article URLs to process
  {settings}  - Agent settings and output directory
  {template}  - Article output template
  {prompts}  - AI agent prompts (customizable)

To get started, create the articles configuration file:
  {articles}

Example configuration:
  items:
    - url: "https://example.com/article1"
    - url: "https://example.com/article2"

Then run the command again to process articles.
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="news-writer",
        description="Turn a list of source URLs into markdown news articles.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help=f"Path to the article list (default: {CONFIG_DIR / ARTICLES_FILENAME})",
    )
    parser.add_argument("--news-articles-url", default=None, help="URL of a CSV file listing article URLs")
    parser.add_argument("--api-key", default=None, help=f"OpenAI API key (or set {API_KEY_ENV})")
    parser.add_argument("--overwrite", action="store_true", help="Regenerate articles that already exist")
    parser.add_argument("--settings-file", type=Path, default=None, help="Custom settings.yaml")
    parser.add_argument("--planner-prompt-file", type=Path, default=None, help="Custom planner system prompt")
    parser.add_argument("--writer-prompt-file", type=Path, default=None, help="Custom writer system prompt")
    parser.add_argument("--planner-schema-file", type=Path, default=None, help="Custom planner output schema")
    parser.add_argument("--template-file", type=Path, default=None, help="Custom article template")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def show_first_run_message(config_dir: Path) -> None:
    print(
        FIRST_RUN_MESSAGE.format(
            config_dir=config_dir,
            articles=config_dir / ARTICLES_FILENAME,
            settings=config_dir / "settings.yaml",
            template=config_dir / "news-article-template.md",
            prompts=config_dir / "*-system-prompt.md",
        )
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Run a batch and return the process exit code."""

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.config is not None and args.news_articles_url:
        parser.error("cannot specify both --config and --news-articles-url")

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    api_key = args.api_key or os.environ.get(API_KEY_ENV, "")
    if not api_key:
        logging.error("API key required: use --api-key or the %s environment variable", API_KEY_ENV)
        return EXIT_USAGE

    overrides = ConfigOverrides(
        settings_path=args.settings_file,
        planner_prompt_path=args.planner_prompt_file,
        writer_prompt_path=args.writer_prompt_file,
        planner_schema_path=args.planner_schema_file,
        template_path=args.template_file,
    )

    try:
        config = Config(overrides)
        config.validate()
    except (ConfigurationError, OSError) as exc:
        logging.error("Could not load configuration: %s", exc)
        return EXIT_USAGE

    if args.news_articles_url:
        source = args.news_articles_url
    elif args.config is not None:
        source = str(args.config)
    else:
        if not config.articles_path.exists():
            init_config_dir(config.config_dir)
            show_first_run_message(config.config_dir)
            return EXIT_OK
        source = str(config.articles_path)

    agents = AgentManager(api_key, config)
    fetcher = ContentFetcher.from_settings(config.settings, uploader=agents.upload_file)
    processor = ArticleProcessor(config, agents, fetcher, overwrite=args.overwrite)

    logging.info("Starting article generation from %s", source)
    try:
        results = processor.process_articles(source)
    except (ConfigurationError, OSError, requests.RequestException) as exc:
        logging.error("Could not load article list %s: %s", source, exc)
        return EXIT_USAGE

    summary = processor.summarize(results)
    return EXIT_FAILURES if summary.failed else EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
