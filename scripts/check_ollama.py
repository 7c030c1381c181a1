#!/usr/bin/env python
"""Check that Ollama is reachable and the configured models are installed.

Usage:
    python scripts/check_ollama.py
    python scripts/check_ollama.py --embed-test   # also embed a test string
"""
import argparse
import asyncio
import sys
from pathlib import Path

import httpx

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from kbchat import config
from kbchat.llm_client import OllamaClient, model_installed
from kbchat.log import configure_logging

# Color codes for terminal output
GREEN = "\033[92m"
RED = "\033[91m"
YELLOW = "\033[93m"
BLUE = "\033[94m"
RESET = "\033[0m"


def print_success(msg):
    print(f"{GREEN}✓{RESET} {msg}")


def print_error(msg):
    print(f"{RED}✗{RESET} {msg}")


def print_info(msg):
    print(f"{BLUE}ℹ{RESET} {msg}")


def print_warning(msg):
    print(f"{YELLOW}⚠{RESET} {msg}")


async def check(embed_test: bool = False) -> int:
    """Run the checks and return the number of errors found."""
    client = OllamaClient(max_retries=0)
    errors = 0

    print_info(f"Checking Ollama connection at {config.OLLAMA_BASE_URL}...")

    try:
        models = await client.list_models()
    except httpx.ConnectError:
        print_error(f"Could not connect to Ollama at {config.OLLAMA_BASE_URL}")
        print_info("  Please ensure Ollama is installed and running (ollama serve).")
        return 1
    except httpx.HTTPError as e:
        print_error(f"Ollama check failed: {e}")
        return 1

    print_success("Ollama is running and accessible.")
    print_info(f"Available models: {', '.join(sorted(models)) or '(none)'}")

    for label, model in (("Chat", config.CHAT_MODEL), ("Embedding", config.EMBEDDING_MODEL)):
        if model_installed(model, models):
            print_success(f"{label} model available: {model}")
        else:
            print_warning(f"{label} model missing: {model}. App may fail to generate responses.")
            print_info(f"  Run: ollama pull {model}")
            errors += 1

    if embed_test:
        try:
            embeddings = await client.embed(["test"], model=config.EMBEDDING_MODEL)
            print_success(f"Embedding API working (dimension: {len(embeddings[0])})")
        except (httpx.HTTPError, IndexError) as e:
            print_error(f"Embedding API test failed: {e}")
            errors += 1

    return errors


def main():
    """Main entry point for the Ollama check script."""
    parser = argparse.ArgumentParser(description="Check the Ollama service and models")
    parser.add_argument(
        "--embed-test",
        action="store_true",
        help="Embed a test string with the configured embedding model",
    )
    args = parser.parse_args()

    configure_logging("WARNING")

    errors = asyncio.run(check(embed_test=args.embed_test))
    sys.exit(1 if errors else 0)


if __name__ == "__main__":
    main()
