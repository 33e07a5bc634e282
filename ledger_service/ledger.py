"""Ledger engine: balance mutation and statement reads against the account store.

Two serialization strategies are available and a process uses exactly one:

* ``LockingStrategy`` reads the account row with ``SELECT ... FOR UPDATE``,
  checks the overdraft limit in Python and writes the new balance. The row
  lock serializes writers on the same account.
* ``ConditionalUpdateStrategy`` issues one ``UPDATE ... WHERE saldo + delta >=
  -limite RETURNING saldo, limite``. The database applies the check and the
  mutation as one step; no returned row means the debit was refused.

Both append the ``transacoes`` row inside the same unit of work as the balance
change, so either both are committed or neither is.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Mapping

from sqlalchemy import case, true, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from .models import CREDIT, DEBIT, Account, LedgerEntry

logger = logging.getLogger(__name__)

MAX_DESCRIPTION = 10
MAX_AMOUNT = 2**31 - 1
STATEMENT_SIZE = 10


class LedgerError(Exception):
    """Base class for ledger outcomes that are not a committed transaction."""


class ValidationError(LedgerError):
    pass


class NotFound(LedgerError):
    pass


class OverdraftRejected(LedgerError):
    pass


class StoreUnavailable(LedgerError):
    pass


@dataclass(frozen=True)
class Balance:
    saldo: int
    limite: int


@dataclass(frozen=True)
class StatementEntry:
    valor: int
    tipo: str
    descricao: str
    realizada_em: datetime


@dataclass(frozen=True)
class Statement:
    saldo: int
    limite: int
    data_extrato: datetime
    ultimas_transacoes: List[StatementEntry] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def validate_transaction(valor, tipo, descricao):
    """Reject malformed requests before any store access."""
    if tipo not in (CREDIT, DEBIT):
        raise ValidationError("Tipo inválido")
    if not isinstance(descricao, str) or not 1 <= len(descricao) <= MAX_DESCRIPTION:
        raise ValidationError("Descrição inválida")
    if isinstance(valor, bool) or not isinstance(valor, int) or not 0 < valor <= MAX_AMOUNT:
        raise ValidationError("Valor inválido")


def check_account(cliente_id: int, accounts: Mapping[int, int]):
    if cliente_id not in accounts:
        raise NotFound("Cliente não encontrado")


def _entry(cliente_id: int, valor: int, tipo: str, descricao: str) -> LedgerEntry:
    return LedgerEntry(
        cliente_id=cliente_id,
        valor=valor,
        tipo=tipo,
        descricao=descricao,
        realizada_em=_utcnow(),
    )


class LockingStrategy:
    """Pessimistic: lock the account row, check, then write."""

    name = "locking"

    def apply(self, session: Session, cliente_id: int, valor: int, tipo: str, descricao: str) -> Balance:
        statement = (
            select(Account)
            .where(Account.id == cliente_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        account = session.exec(statement).first()
        if account is None:
            raise NotFound("Cliente não encontrado")

        novo_saldo = account.saldo + valor if tipo == CREDIT else account.saldo - valor
        if tipo == DEBIT and novo_saldo < -account.limite:
            raise OverdraftRejected("Saldo insuficiente")

        account.saldo = novo_saldo
        session.add(account)
        session.add(_entry(cliente_id, valor, tipo, descricao))
        return Balance(saldo=novo_saldo, limite=account.limite)


class ConditionalUpdateStrategy:
    """Optimistic: a single guarded UPDATE decides and applies the change."""

    name = "conditional"

    def apply(self, session: Session, cliente_id: int, valor: int, tipo: str, descricao: str) -> Balance:
        delta = valor if tipo == CREDIT else -valor
        statement = (
            update(Account)
            .where(Account.id == cliente_id)
            .values(saldo=Account.saldo + delta)
            .returning(Account.saldo, Account.limite)
            .execution_options(synchronize_session=False)
        )
        if tipo == DEBIT:
            statement = statement.where(Account.saldo + delta >= -Account.limite)

        row = session.exec(statement).first()
        if row is None:
            # the id was checked against the provisioned set, so the guard refused it
            raise OverdraftRejected("Saldo insuficiente")

        session.add(_entry(cliente_id, valor, tipo, descricao))
        return Balance(saldo=row.saldo, limite=row.limite)


STRATEGIES = {
    LockingStrategy.name: LockingStrategy,
    ConditionalUpdateStrategy.name: ConditionalUpdateStrategy,
}


def get_strategy(name: str):
    try:
        return STRATEGIES[name]()
    except KeyError:
        raise ValueError(f"unknown ledger strategy: {name}") from None


def apply_transaction(
    session: Session,
    cliente_id: int,
    valor: int,
    tipo: str,
    descricao: str,
    strategy,
    accounts: Mapping[int, int],
) -> Balance:
    """Apply one credit or debit and return the committed balance.

    Raises ValidationError or NotFound without touching the store,
    OverdraftRejected when a debit would take the balance below ``-limite``
    and StoreUnavailable on any store fault. Nothing is left behind unless
    the balance is returned.
    """
    validate_transaction(valor, tipo, descricao)
    check_account(cliente_id, accounts)

    try:
        balance = strategy.apply(session, cliente_id, valor, tipo, descricao)
        session.commit()
    except LedgerError as exc:
        session.rollback()
        logger.debug("transaction refused for client %s: %s", cliente_id, exc)
        raise
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("store failure applying transaction for client %s: %r", cliente_id, exc)
        raise StoreUnavailable("store unavailable") from exc
    return balance


def get_statement(session: Session, cliente_id: int, accounts: Mapping[int, int]) -> Statement:
    """Read balance, limit and the latest entries as one snapshot.

    A single SELECT joins the account row with its ten most recent entries,
    so the balance can never be newer or older than the entries returned.
    """
    check_account(cliente_id, accounts)

    recentes = (
        select(
            LedgerEntry.id,
            LedgerEntry.valor,
            LedgerEntry.tipo,
            LedgerEntry.descricao,
            LedgerEntry.realizada_em,
        )
        .where(LedgerEntry.cliente_id == cliente_id)
        .order_by(LedgerEntry.realizada_em.desc(), LedgerEntry.id.desc())
        .limit(STATEMENT_SIZE)
        .subquery()
    )
    statement = (
        select(
            Account.saldo,
            Account.limite,
            recentes.c.valor,
            recentes.c.tipo,
            recentes.c.descricao,
            recentes.c.realizada_em,
        )
        .select_from(Account)
        .outerjoin(recentes, true())
        .where(Account.id == cliente_id)
        .order_by(recentes.c.realizada_em.desc(), recentes.c.id.desc())
    )

    try:
        rows = session.exec(statement).all()
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("store failure reading statement for client %s: %r", cliente_id, exc)
        raise StoreUnavailable("store unavailable") from exc

    if not rows:
        raise NotFound("Cliente não encontrado")

    entries = [
        StatementEntry(
            valor=row.valor,
            tipo=row.tipo,
            descricao=row.descricao,
            realizada_em=_as_utc(row.realizada_em),
        )
        for row in rows
        if row.valor is not None
    ]
    return Statement(
        saldo=rows[0].saldo,
        limite=rows[0].limite,
        data_extrato=_utcnow(),
        ultimas_transacoes=entries,
    )


def reset_accounts(session: Session, accounts: Dict[int, int]):
    """Put every provisioned account back to balance 0 and its configured limit."""
    statement = (
        update(Account)
        .where(Account.id.in_(list(accounts)))
        .values(saldo=0, limite=case(accounts, value=Account.id))
        .execution_options(synchronize_session=False)
    )
    try:
        result = session.exec(statement)
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("store failure resetting balances: %r", exc)
        raise StoreUnavailable("store unavailable") from exc

    if result.rowcount != len(accounts):
        logger.warning("reset touched %s of %s provisioned accounts", result.rowcount, len(accounts))
    else:
        logger.info("balances reset for %s accounts", len(accounts))
