#!/usr/bin/env -S uv run
"""
Queue Benchmark Tool for pgfifo

Benchmarks the Queue against InMemoryStore and, when a DSN is given,
PostgresStore using realistic operations (enqueue / process).

Usage:
    uv run tools/benchmark_queue.py
    uv run tools/benchmark_queue.py --operations 5000 --concurrency 4,16
    uv run tools/benchmark_queue.py --adapters memory,postgres --dsn postgresql://localhost/bench
    uv run tools/benchmark_queue.py --help
"""
# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "pgfifo",
#     "typer>=0.9.0",
#     "rich>=13.0",
# ]
# ///

from __future__ import annotations

import asyncio
import statistics
import sys
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from time import perf_counter

import asyncpg
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from pgfifo import EmptyQueueError, InMemoryStore, PostgresStore, Queue, Success, install_schema

app = typer.Typer(
    help="Benchmark pgfifo queue operations",
    add_completion=False,
)


# ---------------------------------------------------------------------------
# Data Classes
# ---------------------------------------------------------------------------


@dataclass
class BenchmarkConfig:
    """Configuration for benchmark runs."""

    operations: int = 1000
    concurrency_levels: list[int] = field(default_factory=lambda: [4, 16])
    payload_size: int = 1000
    adapters: list[str] = field(default_factory=lambda: ["memory"])
    dsn: str | None = None


@dataclass
class BenchmarkResult:
    """Results from a single benchmark run."""

    adapter_name: str
    operation: str
    total_ops: int
    total_time: float
    latencies: list[float]  # seconds

    @property
    def ops_per_sec(self) -> float:
        return self.total_ops / self.total_time if self.total_time > 0 else 0.0

    def percentile(self, q: float) -> float:
        """Latency at quantile q (0..1) in seconds."""
        if not self.latencies:
            return 0.0
        ordered = sorted(self.latencies)
        return ordered[min(int(len(ordered) * q), len(ordered) - 1)]

    @property
    def p50(self) -> float:
        return statistics.median(self.latencies) if self.latencies else 0.0

    @property
    def max_latency(self) -> float:
        return max(self.latencies) if self.latencies else 0.0

    @staticmethod
    def format_latency_ms(seconds: float) -> str:
        ms = seconds * 1000
        if ms < 1:
            return f"{ms:.3f}ms"
        elif ms < 10:
            return f"{ms:.2f}ms"
        else:
            return f"{ms:.1f}ms"


# ---------------------------------------------------------------------------
# Core Benchmark Functions
# ---------------------------------------------------------------------------


async def benchmark_enqueue(
    queue: Queue,
    n: int,
    concurrency: int,
    payload: dict,
) -> list[float]:
    """
    Benchmark N enqueue operations spread over `concurrency` producers.

    Returns
    -------
    list[float] : latency for each operation in seconds
    """
    latencies: list[float] = []
    remaining = iter(range(n))

    async def producer() -> None:
        for _ in remaining:
            start = perf_counter()
            await queue.enqueue(payload)
            latencies.append(perf_counter() - start)

    await asyncio.gather(*[producer() for _ in range(concurrency)])
    return latencies


async def benchmark_process(
    queue: Queue,
    concurrency: int,
) -> list[float]:
    """
    Drain the queue with `concurrency` competing workers.

    Each worker loops until it sees EmptyQueueError, exactly as a real
    polling consumer would (minus the back-off sleep).

    Returns
    -------
    list[float] : latency for each processed item in seconds
    """
    latencies: list[float] = []

    async def worker() -> None:
        while True:
            start = perf_counter()
            try:
                await queue.process(lambda payload: Success())
            except EmptyQueueError:
                return
            latencies.append(perf_counter() - start)

    await asyncio.gather(*[worker() for _ in range(concurrency)])
    return latencies


@asynccontextmanager
async def open_queue(adapter_name: str, config: BenchmarkConfig) -> AsyncIterator[Queue]:
    """
    Yield a Queue on a fresh, empty table for the given adapter.

    The postgres adapter creates a throwaway table and drops it afterwards.
    """
    if adapter_name == "memory":
        yield Queue(InMemoryStore())
    elif adapter_name == "postgres":
        if config.dsn is None:
            raise ValueError("--dsn required for the postgres adapter")
        max_size = max(config.concurrency_levels) + 1
        pool = await asyncpg.create_pool(config.dsn, min_size=1, max_size=max_size)
        table = f"pgfifo_bench_{uuid.uuid4().hex[:8]}"
        try:
            await install_schema(pool, table=table)
            yield Queue(PostgresStore(pool, table=table))
        finally:
            await pool.execute(f"DROP TABLE IF EXISTS {table}")
            await pool.close()
    else:
        raise ValueError(f"Unknown adapter: {adapter_name}")


# ---------------------------------------------------------------------------
# Benchmark Runner
# ---------------------------------------------------------------------------


async def run_adapter_benchmark(
    adapter_name: str,
    config: BenchmarkConfig,
) -> list[BenchmarkResult]:
    """Run enqueue and process benchmarks at every concurrency level."""
    results = []
    payload = {"data": "x" * config.payload_size}

    for concurrency in config.concurrency_levels:
        async with open_queue(adapter_name, config) as queue:
            start = perf_counter()
            latencies = await benchmark_enqueue(
                queue, config.operations, concurrency, payload
            )
            results.append(
                BenchmarkResult(
                    adapter_name=adapter_name,
                    operation=f"enqueue-c{concurrency}",
                    total_ops=len(latencies),
                    total_time=perf_counter() - start,
                    latencies=latencies,
                )
            )

            start = perf_counter()
            latencies = await benchmark_process(queue, concurrency)
            results.append(
                BenchmarkResult(
                    adapter_name=adapter_name,
                    operation=f"process-c{concurrency}",
                    total_ops=len(latencies),
                    total_time=perf_counter() - start,
                    latencies=latencies,
                )
            )

    return results


# ---------------------------------------------------------------------------
# Result Formatting
# ---------------------------------------------------------------------------


def format_results(console: Console, results: list[BenchmarkResult]) -> None:
    """Print one rich table per adapter."""
    adapters: dict[str, list[BenchmarkResult]] = {}
    for result in results:
        adapters.setdefault(result.adapter_name, []).append(result)

    console.print()
    console.print(
        Panel("[bold cyan]Queue Benchmark Results[/bold cyan]", expand=False)
    )

    for adapter_name, adapter_results in adapters.items():
        console.print()
        console.print(f"[bold yellow]Adapter: {adapter_name}[/bold yellow]")
        console.print()

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Operation", style="cyan", width=15)
        table.add_column("Ops", justify="right")
        table.add_column("Ops/sec", justify="right", style="green")
        table.add_column("P50", justify="right")
        table.add_column("P95", justify="right")
        table.add_column("P99", justify="right")
        table.add_column("Max", justify="right")

        for result in adapter_results:
            table.add_row(
                result.operation,
                str(result.total_ops),
                f"{result.ops_per_sec:.1f}",
                result.format_latency_ms(result.p50),
                result.format_latency_ms(result.percentile(0.95)),
                result.format_latency_ms(result.percentile(0.99)),
                result.format_latency_ms(result.max_latency),
            )

        console.print(table)

    console.print()


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@app.command()
def main(
    operations: int = typer.Option(
        1000,
        "--operations",
        "-n",
        help="Number of items enqueued (and then processed) per run",
    ),
    concurrency: str = typer.Option(
        "4,16",
        "--concurrency",
        "-c",
        help="Comma-separated numbers of concurrent producers/workers",
    ),
    adapters: str = typer.Option(
        "memory",
        "--adapters",
        "-a",
        help="Comma-separated adapters to test (memory, postgres)",
    ),
    dsn: str | None = typer.Option(
        None,
        "--dsn",
        envvar="PGFIFO_DSN",
        help="PostgreSQL DSN for the postgres adapter",
    ),
) -> None:
    """
    Benchmark pgfifo enqueue/process throughput.

    Measures ops/sec and latency percentiles (p50/p95/p99/max). The queue
    is designed for roughly a thousand operations per second against a
    real database; the memory adapter shows the library's own overhead.
    """
    config = BenchmarkConfig(
        operations=operations,
        concurrency_levels=[int(c) for c in concurrency.split(",")],
        adapters=[a.strip() for a in adapters.split(",")],
        dsn=dsn,
    )
    console = Console()

    all_results = []
    for adapter_name in config.adapters:
        try:
            all_results.extend(asyncio.run(run_adapter_benchmark(adapter_name, config)))
        except Exception as e:
            console.print(f"[red]Error benchmarking {adapter_name}: {e}[/red]")

    if all_results:
        format_results(console, all_results)
    else:
        print("\nNo benchmark results to display.", file=sys.stderr)
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
