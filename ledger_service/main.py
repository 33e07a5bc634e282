import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, List

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlmodel import Session

from .db import get_session, init_db
from .ledger import (
    LedgerError,
    NotFound,
    OverdraftRejected,
    StoreUnavailable,
    ValidationError,
    apply_transaction,
    get_statement,
    get_strategy,
    reset_accounts,
)
from .settings import Settings, get_settings

logging.basicConfig(
    level=get_settings().log_level,
    format='{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s", "module": "%(name)s"}',
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    init_db()
    logger.info(
        "ledger service ready: strategy=%s pool_size=%s accounts=%s",
        settings.ledger_strategy,
        settings.pool_size,
        len(settings.accounts),
    )
    yield
    logger.info("ledger service shutting down")


app = FastAPI(title="ledger-service", lifespan=lifespan)

STATUS_CODES = {
    ValidationError: 422,
    OverdraftRejected: 422,
    NotFound: 404,
    StoreUnavailable: 503,
}


@app.exception_handler(LedgerError)
async def ledger_error(request: Request, exc: LedgerError):
    status = STATUS_CODES.get(type(exc), 500)
    detail = str(exc) if status < 500 else "store unavailable"
    return JSONResponse(status_code=status, content={"detail": detail})


def get_ledger_strategy(settings: Settings = Depends(get_settings)):
    return get_strategy(settings.ledger_strategy)


# validated by the ledger engine, which answers 422 with its own message
class TransacaoIn(BaseModel):
    valor: Any = None
    tipo: Any = None
    descricao: Any = None


class TransacaoOut(BaseModel):
    limite: int
    saldo: int


class SaldoOut(BaseModel):
    total: int
    data_extrato: datetime
    limite: int


class TransacaoInfo(BaseModel):
    valor: int
    tipo: str
    descricao: str
    realizada_em: datetime


class ExtratoOut(BaseModel):
    saldo: SaldoOut
    ultimas_transacoes: List[TransacaoInfo]


@app.post("/clientes/{cliente_id}/transacoes", response_model=TransacaoOut)
def criar_transacao(
    cliente_id: int,
    body: TransacaoIn,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    strategy=Depends(get_ledger_strategy),
):
    balance = apply_transaction(
        session,
        cliente_id,
        body.valor,
        body.tipo,
        body.descricao,
        strategy=strategy,
        accounts=settings.accounts,
    )
    return TransacaoOut(limite=balance.limite, saldo=balance.saldo)


@app.get("/clientes/{cliente_id}/extrato", response_model=ExtratoOut)
def obter_extrato(
    cliente_id: int,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    statement = get_statement(session, cliente_id, accounts=settings.accounts)
    return ExtratoOut(
        saldo=SaldoOut(
            total=statement.saldo,
            data_extrato=statement.data_extrato,
            limite=statement.limite,
        ),
        ultimas_transacoes=[
            TransacaoInfo(
                valor=t.valor,
                tipo=t.tipo,
                descricao=t.descricao,
                realizada_em=t.realizada_em,
            )
            for t in statement.ultimas_transacoes
        ],
    )


# Admin: returns every provisioned account to its starting state between benchmark runs
@app.post("/reset")
def reset(session: Session = Depends(get_session), settings: Settings = Depends(get_settings)):
    reset_accounts(session, settings.accounts)
    return "Saldos dos clientes resetados com sucesso"


@app.get("/health")
def health_check():
    return "OK"


def run():
    import uvicorn

    settings = get_settings()
    uvicorn.run("ledger_service.main:app", host=settings.api_host, port=settings.api_port)
