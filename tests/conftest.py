"""Shared test fixtures and helpers.

Hypothesis Configuration:
- "ci" profile: Fast tests (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/
"""

import os
from datetime import datetime, timezone

import pytest
from hypothesis import Phase, Verbosity, settings

from glyphscroll.core import Config
from glyphscroll.core.envelope import KIND_CONTENT, decode_envelope
from glyphscroll.ledger import InMemoryLedger, LocalSigner

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)
settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))

FIXED_TIME = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
PUBLIC_KEY = "pk_test_author"


def fast_config(**overrides) -> Config:
    """A config whose retries never sleep."""
    values = dict(initial_backoff_s=0.0, max_backoff_s=0.0, fetch_timeout_s=5.0)
    values.update(overrides)
    return Config(**values)


def story_text(size: int) -> str:
    """Deterministic, poorly compressible ASCII text of exactly ``size`` bytes."""
    words = []
    state = 12345
    length = 0
    while length < size:
        state = (state * 1103515245 + 12345) % (2 ** 31)
        word = "".join(chr(ord("a") + (state >> shift) % 26) for shift in (3, 8, 13, 18, 23))
        words.append(word[: 2 + state % 4])
        length += len(words[-1]) + 1
    return " ".join(words)[:size]


def content_predicate(index: int):
    """Match the submission of content chunk ``index``."""

    def matches(payload: bytes) -> bool:
        envelope = decode_envelope(payload)
        return envelope.kind == KIND_CONTENT and envelope.index == index

    return matches


@pytest.fixture
def signer():
    return LocalSigner(PUBLIC_KEY)


@pytest.fixture
def config():
    return fast_config()


@pytest.fixture
def ledger(config):
    return InMemoryLedger(max_payload_size=config.max_payload_size)


def build_package(text: str, config: Config, title: str = "The Long Night"):
    from glyphscroll.publishing import ManifestBuilder

    return ManifestBuilder(config).build(text, title, "Anon", PUBLIC_KEY, timestamp=FIXED_TIME)


def stored_envelopes(ledger: InMemoryLedger):
    """Every submitted transaction, decoded, in submission order."""
    return [decode_envelope(ledger._load(ref)) for ref in ledger.submissions]
