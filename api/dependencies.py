"""Request dependencies resolving the services held on the application state."""

from fastapi import Request

from contracts import TransactionOrchestrator
from listings import ListingManager


def get_listing_manager(request: Request) -> ListingManager:
    return ListingManager(request.app.state.repos)


def get_orchestrator(request: Request) -> TransactionOrchestrator:
    return TransactionOrchestrator(request.app.state.repos, request.app.state.settlement)
