from __future__ import annotations

import importlib.util
import math
import os
import unittest


JAX_AVAILABLE = importlib.util.find_spec("jax") is not None


@unittest.skipUnless(JAX_AVAILABLE, "jax is required for compiler tests")
class CompileScalarTests(unittest.TestCase):
    def _field(self):
        from clisk_jax import node

        return node(lambda p: p[0] * 2 + p[1] - p[2] / 2 + p[3] * 100)

    def test_missing_trailing_coordinates_default_to_zero(self) -> None:
        from clisk_jax import compile_scalar

        fn = compile_scalar(self._field())
        self.assertEqual(fn(), 0.0)
        self.assertEqual(fn(1), 2.0)
        self.assertEqual(fn(1, 3), 5.0)
        self.assertEqual(fn(1, 3, 4), 3.0)
        self.assertEqual(fn(1, 3, 4, 0.5), 53.0)

    def test_keyword_coordinates(self) -> None:
        from clisk_jax import compile_scalar

        fn = compile_scalar(self._field())
        self.assertEqual(fn(y=3), 3.0)
        self.assertEqual(fn(1, t=1), 102.0)

    def test_bad_call_arguments(self) -> None:
        from clisk_jax import NodeTypeError, compile_scalar

        fn = compile_scalar(self._field())
        with self.assertRaises(NodeTypeError):
            fn(1, 2, 3, 4, 5)
        with self.assertRaises(NodeTypeError):
            fn(1, x=2)
        with self.assertRaises(NodeTypeError):
            fn(w=1)
        with self.assertRaises(NodeTypeError):
            fn("1")

    def test_result_is_python_float(self) -> None:
        from clisk_jax import compile_scalar, node

        out = compile_scalar(node(3))()
        self.assertIsInstance(out, float)
        self.assertEqual(out, 3.0)

    def test_double_precision(self) -> None:
        from clisk_jax import compile_scalar, node

        fn = compile_scalar(node(lambda p: p[0] + 1e-12))
        self.assertEqual(fn(1.0), 1.0 + 1e-12)

    @unittest.skipIf(os.environ.get("CLISK_JAX_DISABLE_X64") == "1", "x64 disabled by environment")
    def test_import_enables_x64_globally(self) -> None:
        import jax
        import jax.numpy as jnp

        from clisk_jax.ir import FLOAT_DTYPE

        self.assertIs(FLOAT_DTYPE, jnp.float64)
        self.assertTrue(jax.config.jax_enable_x64)
        self.assertEqual(jnp.asarray(1.0).dtype, jnp.float64)

    def test_non_scalar_node_is_rejected(self) -> None:
        from clisk_jax import NodeCompileError, compile_scalar, node

        with self.assertRaises(NodeCompileError):
            compile_scalar(node([1, 2]))

    def test_lowering_errors(self) -> None:
        from clisk_jax import Apply, Const, NodeCompileError, Ref, Var, code_node, compile_scalar

        bad = (
            Apply("no_such_op", (Var("x"),)),
            Apply("sin", ()),
            Apply("atan2", (Var("x"),)),
            Apply("call", (Const(1.0), Var("x"))),
            Var("w"),
            Ref("missing"),
        )
        for expr in bad:
            with self.subTest(expr=expr):
                with self.assertRaises(NodeCompileError):
                    compile_scalar(code_node(expr))

    def test_each_compilation_is_independent(self) -> None:
        from clisk_jax import compile_scalar

        n = self._field()
        first = compile_scalar(n)
        second = compile_scalar(n)
        self.assertIsNot(first, second)
        self.assertIsNot(first.ir, second.ir)
        self.assertEqual(first.ir, second.ir)
        self.assertEqual(first(1, 2), second(1, 2))

    def test_embedded_objects_are_bound_at_compile_time(self) -> None:
        from clisk_jax import Apply, Var, compile_scalar, object_node, transform

        scale = object_node(lambda a: a * 3)
        n = transform(lambda f: Apply("call", (f.expr, Var("x"))), scale)
        fn = compile_scalar(n)
        ref_nodes = [item for item in fn.ir.nodes if item.op == "ref"]
        self.assertEqual(len(ref_nodes), 1)
        self.assertIs(ref_nodes[0].value, scale.objects[scale.expr.key])
        self.assertEqual(fn(2), 6.0)


@unittest.skipUnless(JAX_AVAILABLE, "jax is required for compiler tests")
class LoweringTests(unittest.TestCase):
    def test_repeated_subexpressions_are_lowered_once(self) -> None:
        from clisk_jax import Var, lower_to_ir

        x = Var("x")
        ir = lower_to_ir((x * x) + (x * x))
        mul_nodes = [item for item in ir.nodes if item.op == "apply:*"]
        self.assertEqual(len(mul_nodes), 1)
        out = ir.nodes[ir.output]
        self.assertEqual(out.op, "apply:+")
        self.assertEqual(out.inputs, (mul_nodes[0].id, mul_nodes[0].id))

    def test_position_arguments_are_shared(self) -> None:
        from clisk_jax import Var, lower_to_ir

        ir = lower_to_ir(Var("x") + Var("y") * Var("x"))
        arg_names = [item.name for item in ir.nodes if item.op == "arg"]
        self.assertEqual(sorted(arg_names), ["x", "y"])

    def test_signed_zero_constants_are_kept_apart(self) -> None:
        from clisk_jax import Apply, Const, code_node, evaluate, lower_to_ir

        pos = Apply("atan2", (Const(0.0), Const(-1.0)))
        neg = Apply("atan2", (Const(-0.0), Const(-1.0)))
        self.assertAlmostEqual(evaluate(code_node(pos)), math.pi)
        self.assertAlmostEqual(evaluate(code_node(neg)), -math.pi)
        self.assertEqual(evaluate(code_node(Apply("+", (pos, neg)))), 0.0)

        ir = lower_to_ir(Apply("+", (pos, neg)))
        atan2_nodes = [item for item in ir.nodes if item.op == "apply:atan2"]
        self.assertEqual(len(atan2_nodes), 2)

    def test_deep_chains_lower_without_recursion(self) -> None:
        from clisk_jax import Const, Var, compile_scalar, evaluate, lower_to_ir, node, transform

        n = node("x")
        for _ in range(2000):
            n = transform(lambda a, b: a.expr + b.expr, n, 1)
        self.assertEqual(evaluate(n), 2000.0)
        self.assertEqual(compile_scalar(n)(0.5), 2000.5)

        expr = Var("x")
        for i in range(5000):
            expr = expr * Const(1.0) if i % 2 else expr + Const(0.0)
        self.assertEqual(lower_to_ir(expr).nodes[-1].op, "apply:*")

    def test_references_are_listed(self) -> None:
        from clisk_jax import Ref, lower_to_ir

        ir = lower_to_ir(Ref("a") + Ref("b") + Ref("a"), {"a": 1.0, "b": 2.0})
        self.assertEqual(sorted(ir.references), ["a", "b"])


@unittest.skipUnless(JAX_AVAILABLE, "jax is required for compiler tests")
class OperationTests(unittest.TestCase):
    def _eval(self, op: str, *args) -> float:
        from clisk_jax import evaluate, function_node

        return evaluate(function_node(op, *args))

    def test_arithmetic(self) -> None:
        self.assertEqual(self._eval("+", 1, 2, 3), 6.0)
        self.assertEqual(self._eval("*", 2, 3, 4), 24.0)
        self.assertEqual(self._eval("-", 5, 2), 3.0)
        self.assertEqual(self._eval("-", 5), -5.0)
        self.assertEqual(self._eval("/", 1, 4), 0.25)
        self.assertEqual(self._eval("pow", 2, 10), 1024.0)
        self.assertEqual(self._eval("mod", -1, 3), 2.0)
        self.assertEqual(self._eval("min", 4, -1, 2), -1.0)
        self.assertEqual(self._eval("max", 4, -1, 2), 4.0)

    def test_unary_functions(self) -> None:
        cases = {
            "neg": (2.0, -2.0),
            "abs": (-3.0, 3.0),
            "sign": (-3.0, -1.0),
            "sqrt": (9.0, 3.0),
            "exp": (0.0, 1.0),
            "log": (math.e, 1.0),
            "floor": (-1.5, -2.0),
            "ceil": (1.2, 2.0),
            "round": (2.6, 3.0),
            "frac": (-1.25, 0.75),
        }
        for op, (arg, expected) in cases.items():
            with self.subTest(op=op):
                self.assertAlmostEqual(self._eval(op, arg), expected, places=12)

        for op, fn in (("sin", math.sin), ("cos", math.cos), ("tan", math.tan), ("atan", math.atan), ("tanh", math.tanh)):
            with self.subTest(op=op):
                self.assertAlmostEqual(self._eval(op, 0.3), fn(0.3), places=12)

    def test_comparisons_yield_zero_or_one(self) -> None:
        self.assertEqual(self._eval("lt", 1, 2), 1.0)
        self.assertEqual(self._eval("lt", 2, 1), 0.0)
        self.assertEqual(self._eval("le", 2, 2), 1.0)
        self.assertEqual(self._eval("gt", 2, 2), 0.0)
        self.assertEqual(self._eval("ge", 3, 2), 1.0)
        self.assertEqual(self._eval("eq", 2, 2), 1.0)
        self.assertEqual(self._eval("ne", 2, 2), 0.0)

    def test_ternary_operations(self) -> None:
        self.assertEqual(self._eval("select", 1, 10, 20), 10.0)
        self.assertEqual(self._eval("select", 0, 10, 20), 20.0)
        self.assertEqual(self._eval("clamp", 5, 0, 1), 1.0)
        self.assertEqual(self._eval("lerp", 10, 20, 0.25), 12.5)
        self.assertAlmostEqual(self._eval("atan2", 1, 1), math.pi / 4, places=12)
        self.assertEqual(self._eval("hypot", 3, 4), 5.0)

    def test_lookup_wraps_indices(self) -> None:
        import jax.numpy as jnp

        from clisk_jax import Apply, Var, compile_scalar, object_node, transform

        image = object_node(jnp.asarray([[0, 1], [2, 3]]))
        n = transform(lambda img: Apply("lookup", (img.expr, Var("x"), Var("y"))), image)
        fn = compile_scalar(n)
        self.assertEqual(fn(1, 0), 2.0)
        self.assertEqual(fn(2.5, 1), 1.0)
        self.assertEqual(fn(-1, -1), 3.0)


@unittest.skipUnless(JAX_AVAILABLE, "jax is required for compiler tests")
class CompiledKernelTests(unittest.TestCase):
    def test_jit_matches_eager_call(self) -> None:
        from clisk_jax import compile_scalar, function_node, node

        n = function_node("sin", node(lambda p: p[0] * 3 + p[1]))
        fn = compile_scalar(n)
        jitted = fn.jit()
        for x, y in ((0.0, 0.0), (0.1, 0.2), (1.5, -2.0)):
            with self.subTest(x=x, y=y):
                self.assertAlmostEqual(float(jitted(x, y)), fn(x, y), places=12)

    def test_vmap_samples_coordinate_grids(self) -> None:
        import jax.numpy as jnp

        from clisk_jax import compile_scalar, node

        fn = compile_scalar(node(lambda p: p[0] * 2 + p[1]))
        xs = jnp.linspace(0.0, 1.0, 5)
        line = fn.vmap()(xs, 1.0)
        self.assertEqual(line.shape, (5,))
        self.assertEqual([float(v) for v in line], [1.0, 1.5, 2.0, 2.5, 3.0])

        gx, gy = jnp.meshgrid(jnp.arange(3.0), jnp.arange(2.0))
        grid = fn.vmap()(gx, gy)
        self.assertEqual(grid.shape, (2, 3))
        self.assertEqual(float(grid[1, 2]), 5.0)

    def test_trace_emits_jaxpr(self) -> None:
        from clisk_jax import compile_scalar, node

        jaxpr = compile_scalar(node(lambda p: p[0] * p[1])).trace(1.0, 2.0)
        self.assertTrue(hasattr(jaxpr, "jaxpr"))
        self.assertIn("mul", str(jaxpr))

    def test_non_scalar_kernel_output_is_a_type_error(self) -> None:
        import jax.numpy as jnp

        from clisk_jax import NodeTypeError, compile_scalar, object_node

        with self.assertRaises(NodeTypeError):
            compile_scalar(object_node(jnp.arange(3.0)))()


if __name__ == "__main__":
    unittest.main()
