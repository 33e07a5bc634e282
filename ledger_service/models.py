from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Index
from sqlmodel import Column, Field, SQLModel, String

CREDIT = "c"
DEBIT = "d"


class Account(SQLModel, table=True):
    __tablename__ = "clientes"

    id: int = Field(primary_key=True)
    limite: int
    saldo: int = 0


class LedgerEntry(SQLModel, table=True):
    __tablename__ = "transacoes"
    __table_args__ = (
        Index("ix_transacoes_cliente_realizada", "cliente_id", "realizada_em"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    cliente_id: int = Field(foreign_key="clientes.id")
    valor: int
    tipo: str = Field(sa_column=Column(String(1), nullable=False))
    descricao: str = Field(sa_column=Column(String(10), nullable=False))
    realizada_em: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
