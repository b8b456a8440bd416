"""Sampling throughput of compiled field kernels: eager, jit and vmap paths."""

from __future__ import annotations

import argparse
from dataclasses import asdict, dataclass
import json
from pathlib import Path
import time

import jax.numpy as jnp

from clisk_jax import Apply, Var, apply_form, compile_scalar, function_node, node, object_node, transform, transform_components
from _bench_utils import host_metadata, mean, percentile, sample_ms, stddev


PROFILE_PRESETS: dict[str, dict[str, int]] = {
    "quick": {"samples": 3, "warmup": 1, "repeats": 20, "size": 64},
    "full": {"samples": 7, "warmup": 3, "repeats": 100, "size": 256},
}


@dataclass(frozen=True)
class TimingStats:
    case: str
    mode: str
    mean_ms: float
    p50_ms: float
    p90_ms: float
    stddev_ms: float
    compile_ms: float


def _fields() -> dict[str, object]:
    table = object_node(jnp.sin(jnp.arange(256.0)))
    wave = function_node("sin", node(lambda p: p[0] * 12.0 + p[1] * 3.0))
    rings = function_node("frac", node(lambda p: (p[0] * p[0] + p[1] * p[1]) * 8.0))
    lookup = transform(lambda tbl: Apply("lookup", (tbl.expr, Var("x") * 255.0)), table)
    blend = transform_components(apply_form("lerp"), wave, rings, lookup)
    return {"wave": wave, "rings": rings, "lookup": lookup, "blend": blend}


def _stats(case: str, mode: str, rows: list[float], compile_ms: float) -> TimingStats:
    return TimingStats(
        case=case,
        mode=mode,
        mean_ms=mean(rows),
        p50_ms=percentile(rows, 0.5),
        p90_ms=percentile(rows, 0.9),
        stddev_ms=stddev(rows),
        compile_ms=compile_ms,
    )


def run(profile: str) -> list[TimingStats]:
    preset = PROFILE_PRESETS[profile]
    size = preset["size"]
    gx, gy = jnp.meshgrid(jnp.linspace(0.0, 1.0, size), jnp.linspace(0.0, 1.0, size))

    results: list[TimingStats] = []
    for name, field in _fields().items():
        start = time.perf_counter()
        fn = compile_scalar(field)
        compile_ms = (time.perf_counter() - start) * 1e3

        kw = {"warmup": preset["warmup"], "samples": preset["samples"]}
        results.append(_stats(name, "eager", sample_ms(fn, (0.25, 0.5), repeats=preset["repeats"], **kw), compile_ms))
        results.append(_stats(name, "jit", sample_ms(fn.jit(), (0.25, 0.5), repeats=preset["repeats"], **kw), compile_ms))
        results.append(_stats(name, "vmap", sample_ms(fn.vmap(), (gx, gy), repeats=max(1, preset["repeats"] // 10), **kw), compile_ms))
    return results


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--profile", choices=sorted(PROFILE_PRESETS), default="quick")
    parser.add_argument("--out", type=Path, default=None)
    args = parser.parse_args()

    payload = {
        "profile": args.profile,
        "host": host_metadata(),
        "results": [asdict(row) for row in run(args.profile)],
    }
    text = json.dumps(payload, indent=2)
    if args.out is None:
        print(text)
    else:
        args.out.write_text(text + "\n", encoding="utf-8")


if __name__ == "__main__":
    main()
