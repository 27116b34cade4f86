import time

import pytest

import tunegraph as tg
from tunegraph import (
    AutoTuner,
    Candidate,
    ConfigurationError,
    Graph,
    GraphConfig,
    KernelBackend,
    KernelRegistry,
    KernelSpec,
    OpKind,
    TunerState,
    candidate_key,
    fingerprint,
    inits,
)
from tunegraph.kernels import cpu, int16
from tunegraph.tuner import coarsen


def _slow(fn, delay=0.02):
    def kernel(node, inputs):
        time.sleep(delay)
        return fn(node, inputs)
    return kernel


def _operands(graph, rows=8, k=16, n=4, seed=0):
    a = graph.constant((rows, k), inits.uniform(-1.0, 1.0, seed=seed))
    b = graph.constant((k, n), inits.uniform(-1.0, 1.0, seed=seed + 1))
    bias = graph.constant((n,), inits.uniform(-1.0, 1.0, seed=seed + 2))
    return a, b, bias


def _affine_keys(a, b, bias):
    base = fingerprint(a.shape, b.shape, bias.shape, flags=(False, False))
    return candidate_key(base, 1), candidate_key(base, 2)


class TestFingerprint:
    def test_coarsen(self):
        assert coarsen((32, 64)) == (8, 16)
        assert coarsen((35, 3)) == (8, 0)

    def test_nearby_shapes_share_a_bucket(self):
        base = fingerprint((32, 64), (64, 16), (1, 16))
        assert fingerprint((35, 64), (64, 16), (1, 16)) == base
        assert fingerprint((36, 64), (64, 16), (1, 16)) != base

    def test_flags_and_ordinals_split_buckets(self):
        base = fingerprint((32, 64), (64, 16), flags=(False, False))
        assert fingerprint((32, 64), (64, 16), flags=(True, False)) != base
        assert candidate_key(base, 1) != candidate_key(base, 2)


class TestAutoTuner:
    def test_rounds_must_be_positive(self):
        with pytest.raises(ConfigurationError):
            AutoTuner(rounds=0)

    def test_run_without_candidates(self):
        with pytest.raises(ConfigurationError):
            AutoTuner().run()

    def test_candidate_errors_propagate(self):
        def broken(record):
            raise ValueError("boom")

        tuner = AutoTuner()
        tuner.insert(Candidate(1, 1, broken))
        with pytest.raises(ValueError, match="boom"):
            tuner.run()

    def test_fastest_candidate_wins_and_is_replayed(self):
        registry = KernelRegistry()
        registry.register(KernelSpec(
            name="slow_exp",
            backend=KernelBackend.CUSTOM,
            op_kind=OpKind.EXP,
            fn=_slow(cpu.exp),
            priority=1,
        ))
        graph = Graph(registry=registry)
        x = graph.input([[0.5, -0.5, 1.5]])
        tuner = AutoTuner()
        builds = {1: 0, 2: 0}

        def candidate(ordinal, op):
            def build(record):
                builds[ordinal] += 1
                return record(op(x), True)
            return Candidate(candidate_key(7, ordinal), ordinal, build)

        def register():
            tuner.clear()
            tuner.insert(candidate(1, tg.exp))
            tuner.insert(candidate(2, tg.relu))

        register()
        first = tuner.run()
        assert first.kind is OpKind.RELU
        assert builds == {1: 1, 2: 1}
        assert tuner.state(candidate_key(7, 2)) is TunerState.RESOLVED

        register()
        second = tuner.run()
        assert second is first
        assert builds == {1: 1, 2: 2}
        assert tuner.stats(candidate_key(7, 2)).runs == 1

    def test_candidates_sharing_a_fingerprint(self):
        registry = KernelRegistry()
        registry.register(KernelSpec(
            name="slow_exp",
            backend=KernelBackend.CUSTOM,
            op_kind=OpKind.EXP,
            fn=_slow(cpu.exp),
            priority=1,
        ))
        graph = Graph(registry=registry)
        x = graph.input([[0.5, -0.5, 1.5]])
        tuner = AutoTuner()
        built = []

        def candidate(ordinal, op):
            def build(record):
                built.append(ordinal)
                return record(op(x), True)
            return build

        tuner.insert(42, candidate(1, tg.exp), ordinal=1)
        tuner.insert(42, candidate(2, tg.relu), ordinal=2)
        assert tuner.state(42) is TunerState.UNSEEN

        assert tuner.run().kind is OpKind.RELU
        assert built == [1, 2]
        assert tuner.state(42) is TunerState.RESOLVED
        assert tuner.stats(42, 1).runs == 1
        assert tuner.stats(42, 2).average < tuner.stats(42, 1).average
        with pytest.raises(ConfigurationError):
            tuner.stats(42)

    def test_clear_keeps_stats_reset_drops_them(self, optimized_graph):
        a, b, bias = _operands(optimized_graph)
        tg.affine(a, b, bias)
        tuner = optimized_graph.tuner
        k1, k2 = _affine_keys(a, b, bias)

        tuner.clear()
        assert tuner.candidates == []
        assert tuner.stats(k1) is not None
        assert tuner.state(k2) is TunerState.RESOLVED

        tuner.reset()
        assert tuner.stats(k1) is None
        assert tuner.state(k2) is TunerState.UNSEEN

    def test_best_requires_a_timing(self):
        tuner = AutoTuner()
        tuner.insert(Candidate(3, 1, lambda record: None))
        with pytest.raises(ConfigurationError):
            tuner.best()


class TestAffineSelection:
    def test_second_call_reuses_decision(self, optimized_graph):
        a, b, bias = _operands(optimized_graph)
        tg.affine(a, b, bias)
        k1, k2 = _affine_keys(a, b, bias)
        assert optimized_graph.tuner.stats(k1).runs == 1
        assert optimized_graph.tuner.stats(k2).runs == 1

        # same shape bucket, different operands
        a2, b2, bias2 = _operands(optimized_graph, rows=9, seed=10)
        assert _affine_keys(a2, b2, bias2) == (k1, k2)
        tg.affine(a2, b2, bias2)
        assert optimized_graph.tuner.stats(k1).runs == 1
        assert optimized_graph.tuner.stats(k2).runs == 1

    def test_rounds_delay_the_decision(self):
        graph = Graph(GraphConfig(optimize=True, tuner_rounds=2))
        a, b, bias = _operands(graph)
        k1, k2 = _affine_keys(a, b, bias)

        tg.affine(a, b, bias)
        assert graph.tuner.state(k1) is TunerState.MEASURING
        assert graph.tuner.state(k2) is TunerState.MEASURING

        a2, b2, bias2 = _operands(graph, seed=20)
        tg.affine(a2, b2, bias2)
        assert graph.tuner.state(k1) is TunerState.RESOLVED
        assert graph.tuner.stats(k2).runs == 2

    def test_slow_int16_kernel_loses(self):
        registry = KernelRegistry()
        registry.register(KernelSpec(
            name="slow_int16_affine",
            backend=KernelBackend.CUSTOM,
            op_kind=OpKind.INT16_AFFINE,
            fn=_slow(registry.find_kernel(OpKind.INT16_AFFINE).fn, delay=0.05),
            precision_support=["int16"],
            priority=1,
        ))
        graph = Graph(GraphConfig(optimize=True), registry=registry)
        a, b, bias = _operands(graph)
        assert tg.affine(a, b, bias).kind is OpKind.AFFINE

    def test_slow_blas_kernel_loses(self):
        registry = KernelRegistry()
        registry.register(KernelSpec(
            name="slow_affine",
            backend=KernelBackend.CUSTOM,
            op_kind=OpKind.AFFINE,
            fn=_slow(cpu.affine, delay=0.05),
            priority=1,
        ))
        graph = Graph(GraphConfig(optimize=True), registry=registry)
        a, b, bias = _operands(graph)
        assert tg.affine(a, b, bias).kind is OpKind.INT16_AFFINE

    def test_upstream_values_are_not_recomputed(self, optimized_graph):
        calls = []
        registry = optimized_graph.registry
        a, b, bias = _operands(optimized_graph)
        hidden = tg.relu(tg.affine(a, b, bias))
        optimized_graph.forward(hidden)

        local = KernelRegistry()
        local.register(KernelSpec(
            name="counting_relu",
            backend=KernelBackend.CUSTOM,
            op_kind=OpKind.RELU,
            fn=lambda node, inputs: calls.append(node.id) or cpu.relu(node, inputs),
            priority=1,
        ))
        optimized_graph.registry = local
        try:
            b2 = optimized_graph.constant((4, 4), inits.uniform(-1.0, 1.0, seed=5))
            bias2 = optimized_graph.constant((4,), inits.uniform(-1.0, 1.0, seed=6))
            tg.affine(hidden, b2, bias2)
        finally:
            optimized_graph.registry = registry
        assert calls == []

    def test_shared_weights_are_requantized_while_measuring(self, optimized_graph):
        calls = []
        registry = optimized_graph.registry
        a, b, bias = _operands(optimized_graph)
        tg.affine(a, b, bias)

        local = KernelRegistry()
        local.register(KernelSpec(
            name="counting_quantize",
            backend=KernelBackend.CUSTOM,
            op_kind=OpKind.QUANTIZE,
            fn=lambda node, inputs: calls.append(node.id) or int16.quantize_kernel(node, inputs),
            precision_support=["int16"],
            priority=1,
        ))
        optimized_graph.registry = local
        try:
            # new shape bucket, same weights: quantize(transpose(b)) is a dedup hit
            wide = optimized_graph.constant((32, 16), inits.uniform(-1.0, 1.0, seed=9))
            tg.affine(wide, b, bias)
        finally:
            optimized_graph.registry = registry
        assert len(calls) == 2

    def test_explicit_tuner(self, optimized_graph):
        a, b, bias = _operands(optimized_graph)
        tuner = AutoTuner()
        tg.affine(a, b, bias, tuner=tuner)
        k1, k2 = _affine_keys(a, b, bias)
        assert len(tuner.candidates) == 2
        assert tuner.stats(k1) is not None
        assert optimized_graph.tuner.candidates == []
        assert optimized_graph.tuner.stats(k1) is None


def test_insert_from_fingerprint_and_build(graph):
    x = graph.input([1.0, -1.0])
    tuner = AutoTuner()
    tuner.insert(11, lambda record: record(tg.relu(x), True))
    tuner.insert(12, lambda record: record(tg.negate(x), True), ordinal=5)
    assert [c.ordinal for c in tuner.candidates] == [1, 5]
    assert tuner.run().kind in (OpKind.RELU, OpKind.NEG)
    with pytest.raises(ConfigurationError):
        tuner.insert(13)
