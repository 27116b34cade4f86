#!/usr/bin/env python3
"""
Simple usage example for Tunegraph
Shows how to build, optimize and run a small expression graph
"""

import logging

import tunegraph as tg
from tunegraph import inits


def example_basic_graph():
    """Build a graph lazily and execute it"""
    print("Example 1: Basic Graph")
    print("-" * 40)

    graph = tg.Graph()
    x = graph.input([[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]], name="x")
    w = graph.param("w", (3, 2), inits.normal(std=0.1, seed=0))
    b = graph.param("b", (2,), inits.zeros())

    hidden = tg.relu(tg.affine(x, w, b))
    probs = tg.softmax(hidden, axis=-1)

    print(f"Nodes built:  {len(graph)}")
    print(f"Output shape: {list(probs.shape)}")
    print(f"Output:       {graph.forward(probs)}")
    print()


def example_masked_attention_scores():
    """Masked softmax over attention scores"""
    print("Example 2: Masked Softmax")
    print("-" * 40)

    graph = tg.Graph()
    q = graph.constant((1, 4, 8), inits.uniform(-1.0, 1.0, seed=1))
    k = graph.constant((1, 5, 8), inits.uniform(-1.0, 1.0, seed=2))
    mask = graph.input([[[1.0, 1.0, 1.0, 0.0, 0.0]]])

    scores = tg.bdot(q, k, trans_b=True, scale=8 ** -0.5)
    weights = tg.softmax(scores, mask=mask)

    print(f"Scores shape: {list(scores.shape)}")
    print(f"Weights:      {graph.forward(weights)[0, 0]}")
    print()


def example_autotuned_affine():
    """int16 and BLAS affine compete per shape bucket"""
    print("Example 3: Autotuned Affine")
    print("-" * 40)

    graph = tg.Graph(tg.GraphConfig.from_env(optimize=True))
    w = graph.param("w", (256, 128), inits.uniform(-0.1, 0.1, seed=3))
    b = graph.param("b", (128,), inits.zeros())

    for batch in (32, 33, 64):
        x = graph.constant((batch, 256), inits.uniform(-1.0, 1.0, seed=batch))
        out = tg.affine(x, w, b)
        print(f"batch={batch:3d} -> {out.kind.value}")
    print()


def main():
    """Run all examples"""
    logging.basicConfig(level=logging.INFO)
    logging.getLogger("tunegraph.tuner").setLevel(logging.DEBUG)

    print("=" * 50)
    print("Tunegraph Usage Examples")
    print("=" * 50)
    print()

    example_basic_graph()
    example_masked_attention_scores()
    example_autotuned_affine()

    print("All examples completed successfully!")


if __name__ == '__main__':
    main()
