import sys
from pathlib import Path

import pytest

# Ensure local package is imported before any installed version
SRC = Path(__file__).resolve().parent.parent / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from tunegraph import Graph, GraphConfig  # noqa: E402


@pytest.fixture
def graph():
    return Graph()


@pytest.fixture
def optimized_graph():
    return Graph(GraphConfig(optimize=True))
