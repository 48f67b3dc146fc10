"""
pictovoice/llm/engine.py — Local instruct-model engine behind the phrase proxy.

Loads a small Hugging Face instruct model from the local cache and turns
chat messages into a short completion. A hard latency budget is enforced by
running generation in a daemon thread and joining with a timeout. The model
is loaded lazily and once; torch and transformers are imported only then,
so the proxy can start (and fall back to local phrases) without them.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pictovoice.core.config import ServerConfig

logger = logging.getLogger(__name__)


class ModelNotFoundError(RuntimeError):
    """
    Raised when the phrase model is not cached locally or cannot be loaded.

    The proxy maps this to a local fallback phrase; download the model
    while online (``huggingface-cli download <model_id>``) to enable it.
    """


class InferenceTimeout(RuntimeError):
    """Raised when generation exceeds the latency budget."""


@dataclass
class InferenceResult:
    """
    Result of a single generation call.

    Attributes:
        text: The generated text, stripped of prompt and special tokens.
        latency_ms: Wall-clock time from submission to result.
        input_tokens: Number of prompt tokens.
        output_tokens: Number of new tokens generated.
    """

    text: str
    latency_ms: float
    input_tokens: int = 0
    output_tokens: int = 0


class PhraseEngine:
    """
    Thread-safe lazy wrapper around a causal LM.

    Args:
        config: Server configuration (model id, cache dir, budget, sampling).
    """

    def __init__(self, config: ServerConfig) -> None:
        """Initialise the engine without loading the model."""
        self._cfg = config
        self._lock = threading.Lock()
        self._model: Optional[object] = None
        self._tokenizer: Optional[object] = None
        self._loaded: bool = False
        logger.info("PhraseEngine initialised (model=%s)", config.model_id)

    @property
    def model_id(self) -> str:
        return self._cfg.model_id

    @property
    def loaded(self) -> bool:
        return self._loaded

    # ──────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────

    def load(self) -> None:
        """
        Load tokenizer and model weights. Blocking; no-op once loaded.

        Raises:
            ModelNotFoundError: If the model is not cached or the model
                libraries are not installed.
        """
        with self._lock:
            if self._loaded:
                return
            self._load_locked()

    def unload(self) -> None:
        """Release the model. Safe to call when nothing is loaded."""
        with self._lock:
            if not self._loaded:
                return
            logger.info("Unloading phrase model")
            self._model = None
            self._tokenizer = None
            self._loaded = False

    # ──────────────────────────────────────────
    # Inference
    # ──────────────────────────────────────────

    def generate(
        self, messages: list[dict[str, str]], max_new_tokens: Optional[int] = None
    ) -> InferenceResult:
        """
        Generate a completion for chat *messages* within the latency budget.

        Raises:
            ModelNotFoundError: If the model cannot be loaded.
            InferenceTimeout: If generation exceeds ``latency_budget_ms``.
        """
        if not self._loaded:
            self.load()

        t_start = time.monotonic()
        result_container: list[InferenceResult] = []
        exc_container: list[BaseException] = []

        def _generate() -> None:
            try:
                result_container.append(
                    self._generate_internal(messages, max_new_tokens, t_start)
                )
            except Exception as exc:  # noqa: BLE001
                exc_container.append(exc)

        gen_thread = threading.Thread(target=_generate, daemon=True, name="phrase-gen")
        gen_thread.start()
        gen_thread.join(timeout=self._cfg.latency_budget_ms / 1000.0)

        if exc_container:
            raise exc_container[0]
        if result_container:
            return result_container[0]

        elapsed_ms = (time.monotonic() - t_start) * 1000.0
        logger.warning(
            "Generation timed out after %.0fms (budget=%dms)",
            elapsed_ms, self._cfg.latency_budget_ms,
        )
        raise InferenceTimeout(f"generation timed out after {elapsed_ms:.0f}ms")

    # ──────────────────────────────────────────
    # Internal helpers
    # ──────────────────────────────────────────

    def _load_locked(self) -> None:
        """Internal model loading (must be called while holding self._lock)."""
        try:
            import torch  # type: ignore
            from transformers import AutoModelForCausalLM, AutoTokenizer  # type: ignore
        except ImportError as exc:
            raise ModelNotFoundError(
                "torch/transformers are not installed; install the 'model' extra"
            ) from exc

        cache_dir = self._cfg.resolved_cache_dir
        model_id = self._cfg.model_id
        logger.info("Loading %s from cache: %s", model_id, cache_dir)
        self._assert_model_cached(model_id, cache_dir)

        try:
            self._tokenizer = AutoTokenizer.from_pretrained(
                model_id,
                cache_dir=str(cache_dir),
                local_files_only=True,
            )
            t0 = time.monotonic()
            self._model = AutoModelForCausalLM.from_pretrained(
                model_id,
                cache_dir=str(cache_dir),
                local_files_only=True,
                device_map=self._cfg.device_map,
                torch_dtype=torch.float16 if torch.cuda.is_available() else torch.float32,
                low_cpu_mem_usage=True,
            )
            logger.info("Model loaded in %.0fms", (time.monotonic() - t0) * 1000.0)
        except OSError as exc:
            raise ModelNotFoundError(
                f"Model '{model_id}' could not be loaded from '{cache_dir}': {exc}"
            ) from exc

        self._loaded = True
        self._log_memory_usage()

    def _generate_internal(
        self,
        messages: list[dict[str, str]],
        max_new_tokens: Optional[int],
        t_start: float,
    ) -> InferenceResult:
        """Tokenise, generate and decode. Runs in the generation thread."""
        import torch  # type: ignore

        tokenizer = self._tokenizer
        model = self._model
        assert tokenizer is not None and model is not None

        prompt = tokenizer.apply_chat_template(  # type: ignore[attr-defined]
            messages, tokenize=False, add_generation_prompt=True
        )
        device = next(model.parameters()).device  # type: ignore[attr-defined]
        inputs = tokenizer(prompt, return_tensors="pt").to(device)  # type: ignore[operator]
        input_length = inputs["input_ids"].shape[1]

        temperature = self._cfg.temperature
        with torch.no_grad():
            outputs = model.generate(  # type: ignore[attr-defined]
                **inputs,
                max_new_tokens=max_new_tokens or self._cfg.max_new_tokens,
                do_sample=temperature > 0,
                temperature=temperature if temperature > 0 else None,
                pad_token_id=tokenizer.eos_token_id,  # type: ignore[attr-defined]
            )

        new_tokens = outputs[0][input_length:]
        text = tokenizer.decode(  # type: ignore[attr-defined]
            new_tokens, skip_special_tokens=True, clean_up_tokenization_spaces=True
        ).strip()

        return InferenceResult(
            text=text,
            latency_ms=(time.monotonic() - t_start) * 1000.0,
            input_tokens=input_length,
            output_tokens=len(new_tokens),
        )

    def _assert_model_cached(self, model_id: str, cache_dir: Path) -> None:
        """
        Verify the model exists in the local Hugging Face cache.

        Raises:
            ModelNotFoundError: If no cached snapshot is found.
        """
        model_cache = cache_dir / f"models--{model_id.replace('/', '--')}"
        if not model_cache.exists():
            raise ModelNotFoundError(
                f"Model '{model_id}' not found in cache '{cache_dir}'."
            )
        snapshots = list((model_cache / "snapshots").glob("*"))
        if not snapshots:
            raise ModelNotFoundError(
                f"Model '{model_id}' cache directory exists but has no snapshots."
            )
        logger.info("Model found in cache: %s", snapshots[0])

    def _log_memory_usage(self) -> None:
        """Log process RSS after model load."""
        import psutil

        rss_gb = psutil.Process().memory_info().rss / (1024 ** 3)
        logger.info("RAM usage after model load: %.2f GB", rss_gb)
