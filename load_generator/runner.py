import asyncio
import logging
import random
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import List, Optional

import httpx

from .checks import LoadTestError, MalformedResponse, check_response
from .workload import DEBIT, STATEMENT, WorkerState, resets_after

logger = logging.getLogger(__name__)

USER_AGENT = "rinha-load-test/1.0"
DEFAULT_ITERATIONS = 340
MAX_LATENCY_SAMPLES = 10000


@dataclass
class IterationResult:
    operation: str
    status: int
    elapsed: float
    accepted: bool = True


@dataclass
class Report:
    """Counts for a run. Latencies are kept as a bounded uniform sample."""

    iterations: int = 0
    operations: Counter = field(default_factory=Counter)
    statuses: Counter = field(default_factory=Counter)
    rejected_debits: int = 0
    latencies: List[float] = field(default_factory=list)
    failures: List[str] = field(default_factory=list)
    max_samples: int = MAX_LATENCY_SAMPLES
    samples_seen: int = 0
    max_latency: float = 0.0
    _rng: random.Random = field(default_factory=lambda: random.Random(0), repr=False, compare=False)

    @property
    def ok(self) -> bool:
        return not self.failures

    def _sample(self, elapsed: float):
        # reservoir sampling, at most max_samples values retained
        self.samples_seen += 1
        self.max_latency = max(self.max_latency, elapsed)
        if len(self.latencies) < self.max_samples:
            self.latencies.append(elapsed)
            return
        slot = self._rng.randrange(self.samples_seen)
        if slot < self.max_samples:
            self.latencies[slot] = elapsed

    def record(self, result: IterationResult):
        self.iterations += 1
        self.operations[result.operation] += 1
        self.statuses[result.status] += 1
        self._sample(result.elapsed)
        if not result.accepted:
            self.rejected_debits += 1

    def merge(self, other: "Report"):
        self.iterations += other.iterations
        self.operations.update(other.operations)
        self.statuses.update(other.statuses)
        self.rejected_debits += other.rejected_debits
        for elapsed in other.latencies:
            self._sample(elapsed)
        self.samples_seen += other.samples_seen - len(other.latencies)
        self.max_latency = max(self.max_latency, other.max_latency)
        self.failures.extend(other.failures)

    def percentile(self, q: float) -> float:
        if not self.latencies:
            return 0.0
        ordered = sorted(self.latencies)
        index = min(len(ordered) - 1, int(round(q * (len(ordered) - 1))))
        return ordered[index]

    def lines(self) -> List[str]:
        out = [
            f"iterations: {self.iterations}",
            "operations: " + ", ".join(f"{k}={v}" for k, v in sorted(self.operations.items())),
            "statuses: " + ", ".join(f"{k}={v}" for k, v in sorted(self.statuses.items())),
            f"rejected debits: {self.rejected_debits}",
            f"latency p50={self.percentile(0.5) * 1000:.2f}ms "
            f"p99={self.percentile(0.99) * 1000:.2f}ms "
            f"max={self.max_latency * 1000:.2f}ms",
        ]
        out.extend(f"FAILED: {failure}" for failure in self.failures)
        return out


def make_client(base_url: str, timeout: float = 5.0, transport=None) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=base_url,
        timeout=timeout,
        transport=transport,
        headers={"user-agent": USER_AGENT},
    )


async def reset(client: httpx.AsyncClient):
    r = await client.post("/reset")
    r.raise_for_status()


async def _timed(operation: str, request) -> IterationResult:
    t = time.perf_counter()
    r = await request
    elapsed = time.perf_counter() - t
    payload = None
    if r.status_code == 200:
        try:
            payload = r.json()
        except ValueError:
            raise MalformedResponse(f"{operation}: body is not JSON") from None
    accepted = check_response(operation, r.status_code, payload)
    return IterationResult(operation=operation, status=r.status_code, elapsed=elapsed, accepted=accepted)


async def transact(client: httpx.AsyncClient, state: WorkerState, operation: str) -> IterationResult:
    tipo = "d" if operation == DEBIT else "c"
    url = f"/clientes/{state.client_id()}/transacoes"
    return await _timed(operation, client.post(url, json=state.transaction(tipo)))


async def statement(client: httpx.AsyncClient, state: WorkerState) -> IterationResult:
    url = f"/clientes/{state.client_id()}/extrato"
    return await _timed(STATEMENT, client.get(url))


async def run_iteration(client: httpx.AsyncClient, state: WorkerState) -> IterationResult:
    operation = state.next_operation()
    if operation == STATEMENT:
        result = await statement(client, state)
    else:
        result = await transact(client, state, operation)

    if resets_after(state.counter):
        await reset(client)

    state.advance()
    return result


async def run_worker(
    client: httpx.AsyncClient,
    state: WorkerState,
    iterations: Optional[int] = None,
    deadline: Optional[float] = None,
) -> Report:
    report = Report()
    while True:
        if iterations is not None and state.counter >= iterations:
            break
        if deadline is not None and time.monotonic() >= deadline:
            break
        try:
            report.record(await run_iteration(client, state))
        except (LoadTestError, httpx.HTTPError) as exc:
            logger.error("iteration %s failed: %s", state.counter, exc)
            report.failures.append(f"iteration {state.counter}: {exc}")
            break
    return report


async def run(
    base_url: str,
    workers: int = 1,
    iterations: Optional[int] = None,
    duration: Optional[float] = None,
    seed: Optional[int] = None,
    timeout: float = 5.0,
    transport=None,
) -> Report:
    """Drive ``workers`` concurrent loops against the service.

    Each worker runs ``iterations`` iterations (or until ``duration``
    seconds have elapsed) with its own client and its own WorkerState.
    Balances are reset before the first and after the last iteration; a
    failed reset is reported like any other failure.
    """
    if iterations is None and duration is None:
        iterations = DEFAULT_ITERATIONS

    total = Report()
    if not await _admin_reset(base_url, timeout, transport, "setup", total):
        return total

    deadline = time.monotonic() + duration if duration is not None else None

    async def worker(worker_id: int) -> Report:
        rng = random.Random(None if seed is None else seed + worker_id)
        async with make_client(base_url, timeout, transport) as client:
            return await run_worker(client, WorkerState(rng=rng), iterations, deadline)

    reports = await asyncio.gather(*(worker(i) for i in range(workers)))
    for report in reports:
        total.merge(report)

    await _admin_reset(base_url, timeout, transport, "teardown", total)
    logger.info("run finished: %s iterations, %s failures", total.iterations, len(total.failures))
    return total


async def _admin_reset(base_url: str, timeout: float, transport, stage: str, report: Report) -> bool:
    try:
        async with make_client(base_url, timeout, transport) as client:
            await reset(client)
    except httpx.HTTPError as exc:
        logger.error("%s reset failed: %s", stage, exc)
        report.failures.append(f"{stage} reset: {exc}")
        return False
    return True
