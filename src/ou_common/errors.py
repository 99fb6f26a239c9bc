"""Unified error codes and custom exceptions.

Error code ranges:
  3xxx: Game lifecycle
  4xxx: Transaction / signature
  5xxx: Chain / oracle
  9xxx: System
"""


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)


# --- 3xxx: Game ---

class NoActiveGame(AppError):
    def __init__(self) -> None:
        super().__init__(3001, "No active game", 404)


class GameNotFound(AppError):
    def __init__(self, game_id: int) -> None:
        super().__init__(3002, f"Game not found: {game_id}", 404)


class GameIsNotEnded(AppError):
    def __init__(self, game_id: int, detail: str = "is not ended") -> None:
        super().__init__(3003, f"Game {game_id} {detail}", 422)


class NoClaimableSolInGame(AppError):
    def __init__(self, game_id: int) -> None:
        super().__init__(3004, f"No claimable SOL in game {game_id}", 422)


class ZeroGameTokenSupply(AppError):
    def __init__(self, game_id: int, side: str) -> None:
        super().__init__(3005, f"Game {game_id} not has {side} token supply", 422)


class GameAlreadyActive(AppError):
    def __init__(self, contract: str) -> None:
        super().__init__(3006, f"Game is on fight: {contract}", 400)


# --- 4xxx: Transaction ---

class TransactionSignatureAlreadyExists(AppError):
    def __init__(self, signature: str) -> None:
        super().__init__(4001, f"Transaction {signature} already exists", 409)


class TransactionSignatureNotExists(AppError):
    def __init__(self, signature: str) -> None:
        super().__init__(4002, f"Transaction signature not exists: {signature}", 400)


class InvalidTransaction(AppError):
    def __init__(self, signature: str, detail: str) -> None:
        super().__init__(4003, f"Invalid transaction signature {signature}: {detail}", 400)


class InvalidSignatureForInitiateGame(AppError):
    def __init__(self, signature: str, contract: str) -> None:
        super().__init__(
            4004,
            f"Transaction signature is invalid for initiating {contract}: {signature}",
            400,
        )


class SignatureAlreadyInitiated(AppError):
    def __init__(self, signature: str) -> None:
        super().__init__(4005, f"Signature has been initiated: {signature}", 400)


class NoValidTransfer(AppError):
    def __init__(self) -> None:
        super().__init__(4006, "No valid transfer to over or under address", 400)


# --- 5xxx: Chain / oracle ---

class InvalidContractAddress(AppError):
    def __init__(self, contract: str) -> None:
        super().__init__(5001, f"Invalid contract address: {contract}", 400)


class RouteNotFound(AppError):
    def __init__(self, input_mint: str, output_mint: str) -> None:
        super().__init__(5002, f"Route not found for {input_mint} -> {output_mint}", 400)


class FailedGetPriceInUsd(AppError):
    def __init__(self) -> None:
        super().__init__(5003, "Failed to get Solana price in USD", 502)


class TransientLedgerError(Exception):
    """Expired blockhash, unconfirmed or rejected send: safe to retry from the top."""


# --- 9xxx: System ---

class InternalError(AppError):
    def __init__(self, detail: str = "Internal server error") -> None:
        super().__init__(9002, detail, 500)


class LedgerRetryExhausted(AppError):
    def __init__(self, operation: str, attempts: int) -> None:
        super().__init__(
            9003, f"Ledger unavailable: {operation} failed after {attempts} attempts", 503
        )
