from geodir.confirmation.gate import ConfirmationGate
from geodir.confirmation.models import ConfirmationToken, TokenState, TokenSubject
from geodir.confirmation.repository import PostgresTokenRepository, TokenRepository

__all__ = [
    "ConfirmationGate",
    "ConfirmationToken",
    "PostgresTokenRepository",
    "TokenRepository",
    "TokenState",
    "TokenSubject",
]
