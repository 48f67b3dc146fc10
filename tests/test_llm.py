"""
tests/test_llm.py — Unit tests for local fallback, prompt building and the model engine.

The model is never loaded: engine tests patch the generation step or point
the engine at an empty cache.
"""

from __future__ import annotations

import time
import unittest
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from pictovoice.core.config import ServerConfig
from pictovoice.llm.engine import (
    InferenceResult,
    InferenceTimeout,
    ModelNotFoundError,
    PhraseEngine,
)
from pictovoice.llm.fallback import compose_local
from pictovoice.llm.prompt_builder import ConceptList, PromptBuilder


# ──────────────────────────────────────────────
# Local fallback
# ──────────────────────────────────────────────

class TestComposeLocal(unittest.TestCase):

    def test_priority_order(self) -> None:
        # self+water outranks self+help.
        self.assertEqual(
            compose_local(["self", "water", "help"]), "Please, I need a glass of water."
        )
        self.assertEqual(
            compose_local(["you", "water", "help"]),
            "Could you bring me a glass of water, please?",
        )

    def test_order_insensitive_match(self) -> None:
        self.assertEqual(
            compose_local(["water", "sleep", "self"]), "Please, I need a glass of water."
        )

    def test_pair_rules(self) -> None:
        cases = {
            ("self", "bathroom"): "I need to go to the bathroom, please.",
            ("self", "tv"): "I want to watch TV.",
            ("self", "pain"): "Something hurts, I don't feel well.",
            ("you", "help"): "Could you help me, please?",
            ("you", "food"): "Could you bring me some food, please?",
        }
        for concepts, expected in cases.items():
            with self.subTest(concepts=concepts):
                self.assertEqual(compose_local(list(concepts)), expected)

    def test_single_concept_rules(self) -> None:
        self.assertEqual(compose_local(["yes"]), "Yes, please.")
        self.assertEqual(compose_local(["self", "no", "sleep"]), "I am sleepy, I want to sleep.")
        self.assertEqual(compose_local(["no", "tv", "hot"]), "No, thank you.")

    def test_generic_sentence(self) -> None:
        self.assertEqual(
            compose_local(["sun", "moon", "tree"]), "I want to say: sun, moon, tree."
        )

    def test_deterministic(self) -> None:
        concepts = ["help", "food", "tv"]
        self.assertEqual(compose_local(concepts), compose_local(list(concepts)))

    def test_rule_priority(self) -> None:
        self.assertEqual(compose_local(["self", "hot"]), "I feel very hot.")
        self.assertEqual(
            compose_local(["you", "water", "self"]), "Please, I need a glass of water."
        )
        self.assertEqual(compose_local(["tv", "food"]), "I want to say: tv, food.")


# ──────────────────────────────────────────────
# Prompt builder
# ──────────────────────────────────────────────

class TestPromptBuilder:

    def test_concepts_validated(self) -> None:
        with pytest.raises(ValidationError):
            ConceptList(concepts=[])
        with pytest.raises(ValidationError):
            ConceptList(concepts=["water", "  "])
        assert ConceptList(concepts=[" Water ", "self"]).concepts == ["Water", "self"]

    def test_chat_messages(self) -> None:
        messages = PromptBuilder().build_chat_messages(
            ConceptList(concepts=["self", "water", "help"])
        )
        assert [m["role"] for m in messages] == ["system", "user"]
        assert "self, water, help" in messages[1]["content"]
        assert "eye tracker" in messages[1]["content"]

    def test_custom_context(self) -> None:
        prompt = PromptBuilder().build(
            ConceptList(concepts=["tv"], context="Evening at home.")
        )
        assert prompt.startswith("Evening at home.")

    def test_probe_messages(self) -> None:
        messages = PromptBuilder().probe_messages()
        assert messages[-1]["role"] == "user"


# ──────────────────────────────────────────────
# PhraseEngine
# ──────────────────────────────────────────────

class TestPhraseEngine:

    def test_missing_cache_raises_model_not_found(self, tmp_path) -> None:
        engine = PhraseEngine(ServerConfig(cache_dir=str(tmp_path)))
        with pytest.raises(ModelNotFoundError):
            engine.load()
        assert not engine.loaded

    def test_cached_snapshot_is_accepted(self, tmp_path) -> None:
        (tmp_path / "models--org--tiny" / "snapshots" / "abc123").mkdir(parents=True)
        engine = PhraseEngine(ServerConfig(cache_dir=str(tmp_path)))
        engine._assert_model_cached("org/tiny", tmp_path)

    def test_snapshotless_cache_rejected(self, tmp_path) -> None:
        (tmp_path / "models--org--tiny").mkdir()
        engine = PhraseEngine(ServerConfig(cache_dir=str(tmp_path)))
        with pytest.raises(ModelNotFoundError):
            engine._assert_model_cached("org/tiny", tmp_path)

    def _loaded_engine(self, budget_ms: int = 1000) -> PhraseEngine:
        engine = PhraseEngine(ServerConfig(latency_budget_ms=budget_ms))
        engine._loaded = True
        return engine

    def test_generate_returns_result(self) -> None:
        engine = self._loaded_engine()
        expected = InferenceResult(text="I want water.", latency_ms=3.0)
        with patch.object(engine, "_generate_internal", return_value=expected):
            assert engine.generate([{"role": "user", "content": "x"}]) is expected

    def test_latency_budget_enforced(self) -> None:
        engine = self._loaded_engine(budget_ms=50)
        with patch.object(
            engine, "_generate_internal", side_effect=lambda *a: time.sleep(0.5)
        ):
            t0 = time.monotonic()
            with pytest.raises(InferenceTimeout):
                engine.generate([{"role": "user", "content": "x"}])
            assert time.monotonic() - t0 < 0.4

    def test_generation_errors_propagate(self) -> None:
        engine = self._loaded_engine()
        with patch.object(engine, "_generate_internal", side_effect=RuntimeError("cuda oom")):
            with pytest.raises(RuntimeError, match="cuda oom"):
                engine.generate([{"role": "user", "content": "x"}])

    def test_unload_is_safe(self) -> None:
        engine = self._loaded_engine()
        engine.unload()
        engine.unload()
        assert not engine.loaded


if __name__ == "__main__":
    unittest.main()
