"""FastAPI dependencies wiring the gateway components.

The store and processor client are process-wide singletons; tests replace
them through ``app.dependency_overrides``.
"""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from simplepay_gateway.clients.processor_client import SimplePayClient
from simplepay_gateway.config import GatewayConfig, settings
from simplepay_gateway.domain.flows import ReturnRoutes
from simplepay_gateway.domain.return_events import ReturnEventMapper
from simplepay_gateway.domain.state_machine import TransactionStateMachine
from simplepay_gateway.handlers.ipn_handler import IpnHandler
from simplepay_gateway.handlers.return_handler import ReturnHandler
from simplepay_gateway.infrastructure.store import InMemoryOrderStore, OrderStore


@lru_cache
def get_store() -> OrderStore:
    """Order store shared by all requests."""
    return InMemoryOrderStore()


@lru_cache
def get_client() -> SimplePayClient:
    """Processor client built from application settings."""
    return SimplePayClient(GatewayConfig.from_settings(settings))


def get_routes() -> ReturnRoutes:
    return ReturnRoutes(
        public_base_url=settings.public_base_url,
        success_page_url=settings.success_page_url,
        failure_page_url=settings.failure_page_url,
    )


StoreDep = Annotated[OrderStore, Depends(get_store)]
ClientDep = Annotated[SimplePayClient, Depends(get_client)]
RoutesDep = Annotated[ReturnRoutes, Depends(get_routes)]


def get_state_machine(
    client: ClientDep,
    store: StoreDep,
    routes: RoutesDep,
) -> TransactionStateMachine:
    return TransactionStateMachine(client=client, store=store, routes=routes)


StateMachineDep = Annotated[TransactionStateMachine, Depends(get_state_machine)]


def get_return_handler(
    state_machine: StateMachineDep,
    store: StoreDep,
    routes: RoutesDep,
) -> ReturnHandler:
    return ReturnHandler(
        state_machine=state_machine,
        mapper=ReturnEventMapper(state_machine.signer),
        store=store,
        routes=routes,
    )


def get_ipn_handler(state_machine: StateMachineDep) -> IpnHandler:
    return IpnHandler(state_machine)


ReturnHandlerDep = Annotated[ReturnHandler, Depends(get_return_handler)]
IpnHandlerDep = Annotated[IpnHandler, Depends(get_ipn_handler)]
