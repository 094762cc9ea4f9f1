"""
Configuration System Tests

Tests for the YAML configuration loader and factory functions.
"""

import asyncio
import os
from pathlib import Path

import pytest
from dotenv import load_dotenv

load_dotenv()

CONFIG_PATH = Path(__file__).parent / "cortex" / "config" / "models.yaml"


def test_load_config_from_yaml():
    """Test loading configuration from YAML file."""
    print("=" * 60)
    print("TEST 1: Load configuration from YAML")
    print("=" * 60)

    from cortex.config.loader import load_config_from_yaml

    # Test loading test profile
    profile = load_config_from_yaml(CONFIG_PATH, "test")
    print("\nLoaded profile: test")
    print(f"  Generator backend: {profile.generator.backend}")
    print(f"  Retrieval backend: {profile.retrieval.backend}")
    print(f"  Storage backend: {profile.storage.backend}")

    assert profile.generator.backend == "mock"
    assert profile.retrieval.backend == "mock"
    assert profile.storage.backend == "memory"
    assert profile.research.planner.initial_questions == 2
    assert profile.research.orchestrator.max_wall_time_seconds is None
    print("\n[PASS] test profile loaded correctly")

    # Test loading production profile
    profile = load_config_from_yaml(CONFIG_PATH, "production")
    print("\nLoaded profile: production")
    print(f"  Generator backend: {profile.generator.backend}")
    print(f"  Max steps: {profile.research.orchestrator.max_steps}")

    assert profile.generator.backend == "anthropic"
    assert profile.storage.backend == "convex"
    assert profile.research.executor.min_searches_before_done == 4
    assert profile.research.retry.max_attempts == 4
    print("\n[PASS] production profile loaded correctly")


def test_missing_profile():
    """Test that an unknown profile names the available ones."""
    print("\n" + "=" * 60)
    print("TEST 2: Unknown profile")
    print("=" * 60)

    from cortex.config.loader import load_config_from_yaml

    with pytest.raises(KeyError) as excinfo:
        load_config_from_yaml(CONFIG_PATH, "does-not-exist")

    assert "test" in str(excinfo.value)
    print("\n[PASS] Unknown profile rejected")


def test_unset_env_vars_become_none(monkeypatch):
    """Test that ${VAR} placeholders for unset variables are blanked."""
    print("\n" + "=" * 60)
    print("TEST 3: Env var expansion")
    print("=" * 60)

    from cortex.config.loader import load_config_from_yaml

    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
    monkeypatch.setenv("OPENROUTER_DEFAULT_MODEL", "some/model")

    profile = load_config_from_yaml(CONFIG_PATH, "dev")
    print(f"\n  Model: {profile.generator.model}")
    print(f"  API key: {profile.generator.api_key}")

    assert profile.generator.model == "some/model"
    assert profile.generator.api_key is None
    print("\n[PASS] Env var expansion works")


def test_load_config_env_fallback(monkeypatch):
    """Test loading configuration from environment variables."""
    print("\n" + "=" * 60)
    print("TEST 4: Load configuration from environment (fallback)")
    print("=" * 60)

    from cortex.config.loader import load_config_from_env

    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
    monkeypatch.delenv("CONVEX_URL", raising=False)

    profile = load_config_from_env()
    print("\nLoaded from environment:")
    print(f"  Generator backend: {profile.generator.backend}")
    print(f"  Storage backend: {profile.storage.backend}")

    assert profile.generator.backend == "anthropic"
    assert profile.retrieval.backend == "tavily"
    assert profile.storage.backend == "file"
    assert profile.events.convex_url is None
    print("\n[PASS] Environment fallback works correctly")


def test_load_config_main(monkeypatch, tmp_path):
    """Test the main load_config function."""
    print("\n" + "=" * 60)
    print("TEST 5: Main load_config function")
    print("=" * 60)

    from cortex.config import load_config

    # Test with explicit profile
    profile = load_config(profile="test")
    assert profile.generator.backend == "mock"
    print("\n[PASS] load_config with explicit profile works")

    # Test with MODEL_PROFILE env var
    monkeypatch.setenv("MODEL_PROFILE", "production")
    profile = load_config()
    assert profile.generator.backend == "anthropic"
    print("[PASS] load_config with MODEL_PROFILE works")

    # Test missing file falls back to environment
    profile = load_config(config_path=tmp_path / "missing.yaml")
    assert profile.retrieval.backend == "tavily"
    print("[PASS] load_config falls back to environment")


def test_factory_backends(tmp_path):
    """Test creating individual backends from config."""
    print("\n" + "=" * 60)
    print("TEST 6: Factory - individual backends")
    print("=" * 60)

    from cortex.config import (
        MockRetriever,
        MockStructuredGenerator,
        create_blob_store,
        create_generator,
        create_progress_sink,
        create_retriever,
        load_config,
    )
    from cortex.config.loader import EventsConfig, StorageConfig
    from cortex.storage import ConvexClient, FileBlobStore, MemoryBlobStore

    profile = load_config(profile="test")

    generator = create_generator(profile.generator)
    print(f"\nCreated generator: {type(generator).__name__}")
    assert isinstance(generator, MockStructuredGenerator)

    retriever = create_retriever(profile.retrieval)
    print(f"Created retriever: {type(retriever).__name__}")
    assert isinstance(retriever, MockRetriever)

    assert isinstance(create_blob_store(StorageConfig(backend="memory")), MemoryBlobStore)
    store = create_blob_store(StorageConfig(backend="file", path=str(tmp_path)))
    assert isinstance(store, FileBlobStore)
    convex = create_blob_store(StorageConfig(backend="convex", url="https://example.convex.cloud"))
    assert isinstance(convex, ConvexClient)
    print("[PASS] Blob stores created")

    sink = create_progress_sink(EventsConfig(log_events=True, convex_url="https://example.convex.cloud"))
    print(f"Created sinks: {[type(s).__name__ for s in sink.sinks]}")
    assert [type(s).__name__ for s in sink.sinks] == ["LoggingSink", "ConvexClient"]
    assert create_progress_sink(EventsConfig(log_events=False)).sinks == []
    print("[PASS] Progress sinks created")

    # Test real backends (if API keys available)
    if os.getenv("OPENROUTER_API_KEY") and os.getenv("TAVILY_API_KEY"):
        profile = load_config(profile="dev")
        generator = create_generator(profile.generator)
        retriever = create_retriever(profile.retrieval)
        print(f"Created {type(generator).__name__} and {type(retriever).__name__}")
        print("[PASS] Live backends created")
    else:
        print("[SKIP] Live backends (no API keys)")


@pytest.mark.asyncio
async def test_mock_generator_outputs():
    """Test that mock generation produces valid models for every stage."""
    print("\n" + "=" * 60)
    print("TEST 7: Mock structured generation")
    print("=" * 60)

    from cortex.config import MockStructuredGenerator
    from cortex.orchestration.executor import CycleReflection, QueryBatch
    from cortex.orchestration.planner import KickoffPlan

    generator = MockStructuredGenerator()
    context = "OBJECTIVE: Describe bees\n\nSUCCESS CRITERIA:\n  1. Lifespan\n  2. Diet\n"

    plan = await generator.generate("plan", context, KickoffPlan)
    print(f"\nKickoff questions: {[q.question for q in plan.questions]}")
    assert len(plan.questions) == 2
    assert "Lifespan" in plan.questions[0].question

    batch = await generator.generate("queries", "QUESTION: How long do bees live?\nCYCLE: 3/10", QueryBatch)
    print(f"Queries: {batch.queries}")
    assert len(batch.queries) == 2
    assert all(q.endswith("3") for q in batch.queries)

    reflection = await generator.generate("reflect", "QUESTION: How long do bees live?", CycleReflection)
    assert reflection.status == "done"
    print("\n[PASS] Mock generator produces valid outputs")


@pytest.mark.asyncio
async def test_open_service_from_test_profile():
    """Test running a complete session from the test profile."""
    print("\n" + "=" * 60)
    print("TEST 8: Factory - open_service")
    print("=" * 60)

    from cortex.config import load_config, open_service

    profile = load_config(profile="test")

    async with open_service(profile) as service:
        handle = await service.start_research("List three facts about honey bees", ["3 distinct facts"])
        events = [event async for event in handle.events]
        doc = await service.wait(handle.session_id)

    print(f"\nSession {handle.session_id}: {len(events)} events, status {doc.status.value}")
    print(f"  Questions: {len(doc.questions)}")
    print(f"  Confidence: {doc.final_confidence.value}")

    assert doc.is_complete
    assert doc.final_answer
    print("\n[PASS] open_service works correctly")


def main():
    """Run all tests."""
    print("\n" + "=" * 60)
    print("CONFIGURATION SYSTEM TESTS")
    print("=" * 60)

    test_load_config_from_yaml()
    test_missing_profile()
    asyncio.run(test_mock_generator_outputs())
    asyncio.run(test_open_service_from_test_profile())

    print("\n" + "=" * 60)
    print("ALL TESTS PASSED!")
    print("=" * 60)


if __name__ == "__main__":
    main()
