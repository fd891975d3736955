from __future__ import annotations

import pytest

from helpers import ACK, ScriptedTransport


@pytest.fixture
def acking():
    def make(n: int = 1000) -> ScriptedTransport:
        return ScriptedTransport([ACK] * n)

    return make
