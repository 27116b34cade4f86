#!/usr/bin/env python3
"""
Tunegraph affine benchmark.
Times the int16 and full-precision affine variants on CPU and shows which
one the tuner picks for each shape bucket.
"""

import time
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import tunegraph as tg


class BenchmarkHarness:
    """Benchmark harness with warmup and measurement."""

    def __init__(self):
        self.results = {}

    def warmup(self, graph, output, iterations=3):
        """Warmup phase (not measured)."""
        for _ in range(iterations):
            graph.forward(output)

    def measure(self, graph, output, iterations=20, name="Variant"):
        """Measure forward time of ``output`` after warmup."""
        self.warmup(graph, output)

        print(f"    Measuring {name}...", end='', flush=True)
        start = time.perf_counter()
        for _ in range(iterations):
            graph.forward(output)
        elapsed_s = time.perf_counter() - start

        ms_per_iter = (elapsed_s * 1000) / iterations
        print(f" {ms_per_iter:.3f} ms/iter")

        result = {
            'total_time_s': elapsed_s,
            'ms_per_iter': ms_per_iter,
            'iterations': iterations,
        }
        self.results[name] = result
        return result


def build_affine(m, k, n, optimize, autotune=True):
    graph = tg.Graph(tg.GraphConfig(optimize=optimize, autotune=autotune))
    a = graph.constant((m, k), tg.inits.uniform(-1.0, 1.0, seed=0))
    b = graph.constant((k, n), tg.inits.uniform(-1.0, 1.0, seed=1))
    bias = graph.constant((n,), tg.inits.uniform(-1.0, 1.0, seed=2))
    return graph, tg.affine(a, b, bias)


def benchmark_affine():
    """Compare both affine variants and the tuner's choice per shape."""
    print("\n" + "=" * 70)
    print("AFFINE PERFORMANCE")
    print("=" * 70)

    configs = [
        {"name": "Small", "m": 16, "k": 256, "n": 256},
        {"name": "Medium", "m": 64, "k": 512, "n": 512},
        {"name": "Large", "m": 256, "k": 1024, "n": 1024},
    ]

    for config in configs:
        m, n, k = config['m'], config['n'], config['k']
        print(f"\n{config['name']} ({m}x{k} . {k}x{n}):")
        print("-" * 40)

        bench = BenchmarkHarness()
        graph, blas = build_affine(m, k, n, optimize=False)
        blas_result = bench.measure(graph, blas, name="blas")

        graph, quantized = build_affine(m, k, n, optimize=True, autotune=False)
        int16_result = bench.measure(graph, quantized, name="int16")

        graph, chosen = build_affine(m, k, n, optimize=True)
        speedup = blas_result['ms_per_iter'] / int16_result['ms_per_iter']

        print(f"\n    Results:")
        print(f"    blas:   {blas_result['ms_per_iter']:.3f} ms/iter")
        print(f"    int16:  {int16_result['ms_per_iter']:.3f} ms/iter ({speedup:.2f}x)")
        print(f"    tuner picked: {chosen.kind.value}")


def main():
    """Main benchmark entry point."""
    print("=" * 70)
    print("TUNEGRAPH INT16 vs BLAS AFFINE".center(70))
    print("=" * 70)

    benchmark_affine()

    print("\n" + "=" * 70)
    print("BENCHMARK COMPLETE".center(70))
    print("=" * 70)


if __name__ == "__main__":
    main()
