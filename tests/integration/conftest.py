"""Pytest configuration and fixtures for integration tests.

Loads .env and skips the live tests when GEMINI_API_KEY is missing.
"""

import os
import pytest
from dotenv import load_dotenv
from pathlib import Path


def pytest_configure(config):
    """Load .env from the project root before collection."""
    env_path = Path(__file__).parent.parent.parent / ".env"
    load_dotenv(env_path)

    # Keep live runs small and cheap
    os.environ.setdefault("MAX_SEARCH_ATTEMPTS", "2")

    print("\n" + "=" * 70)
    print("Note: These tests call the live Gemini API and require GEMINI_API_KEY")
    print(f"Environment loaded from: {env_path}")
    print(f"  - Tavily image fallback: {'ENABLED' if os.getenv('TAVILY_API_KEY') else 'DISABLED'}")
    print("=" * 70 + "\n")


@pytest.fixture(scope="session", autouse=True)
def check_api_keys():
    """Skip every integration test when GEMINI_API_KEY is not configured."""
    if not os.getenv("GEMINI_API_KEY"):
        pytest.skip(
            "Integration tests skipped. Missing API key: GEMINI_API_KEY. Please set it in your .env file.",
            allow_module_level=True,
        )
