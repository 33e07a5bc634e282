"""Independent re-check of the overdraft invariant on every response."""

from .workload import CREDIT, DEBIT, STATEMENT

MAX_RECENT = 10


class LoadTestError(Exception):
    pass


class InvariantViolation(LoadTestError):
    pass


class MalformedResponse(LoadTestError):
    pass


class UnexpectedStatus(LoadTestError):
    pass


def _integer(payload, key: str) -> int:
    if not isinstance(payload, dict) or key not in payload:
        raise MalformedResponse(f"'{key}' not found in response")
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedResponse(f"'{key}' is not a valid number: {value!r}")
    return value


def check_balance(payload, saldo_key: str = "saldo", limite_key: str = "limite"):
    saldo = _integer(payload, saldo_key)
    limite = _integer(payload, limite_key)
    if saldo < -limite:
        raise InvariantViolation(f"limit exceeded: saldo {saldo} < -{limite}")


def check_statement(payload):
    if not isinstance(payload, dict):
        raise MalformedResponse("statement body is not an object")
    check_balance(payload.get("saldo"), "total", "limite")
    recent = payload.get("ultimas_transacoes")
    if not isinstance(recent, list):
        raise MalformedResponse("'ultimas_transacoes' not found in response")
    if len(recent) > MAX_RECENT:
        raise InvariantViolation(f"statement returned {len(recent)} transactions")


def check_response(operation: str, status: int, payload=None) -> bool:
    """Validate one response; returns False for a refused debit.

    A 422 on a debit means the service correctly refused an overdraft. A 422
    on a credit or statement, or any 5xx, fails the run.
    """
    if status >= 500:
        raise UnexpectedStatus(f"{operation}: server fault {status}")

    if operation == DEBIT:
        if status == 422:
            return False
        if status == 200:
            check_balance(payload)
        return True

    if status != 200:
        raise UnexpectedStatus(f"{operation}: unexpected status code {status}")
    if operation == CREDIT:
        check_balance(payload)
    elif operation == STATEMENT:
        check_statement(payload)
    else:
        raise ValueError(f"unknown operation {operation}")
    return True
