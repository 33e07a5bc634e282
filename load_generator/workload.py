"""The fixed operation cycle and per-worker request shaping."""

import random
import string
from dataclasses import dataclass, field

DEBIT = "debito"
CREDIT = "credito"
STATEMENT = "extrato"

CYCLE = 34
CREDIT_SLOT = 22
STATEMENT_SLOT = 33

CLIENT_IDS = (1, 5)
AMOUNTS = (1, 10000)
DESCRIPTION_LENGTH = 10
ALPHANUMERIC = string.ascii_letters + string.digits


def operation_for(counter: int) -> str:
    slot = counter % CYCLE
    if slot == STATEMENT_SLOT:
        return STATEMENT
    if slot == CREDIT_SLOT:
        return CREDIT
    return DEBIT


def resets_after(counter: int) -> bool:
    return counter % CYCLE == 0


@dataclass
class WorkerState:
    """Iteration counter and random source owned by a single worker."""

    rng: random.Random = field(default_factory=random.Random)
    counter: int = 0

    def next_operation(self) -> str:
        return operation_for(self.counter)

    def advance(self):
        self.counter += 1

    def client_id(self) -> int:
        return self.rng.randint(*CLIENT_IDS)

    def amount(self) -> int:
        return self.rng.randint(*AMOUNTS)

    def description(self) -> str:
        return "".join(self.rng.choices(ALPHANUMERIC, k=DESCRIPTION_LENGTH))

    def transaction(self, tipo: str) -> dict:
        return {"valor": self.amount(), "tipo": tipo, "descricao": self.description()}
