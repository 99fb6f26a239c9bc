"""Tests for ou_common.errors and ou_common.response."""

from src.ou_common.errors import (
    AppError,
    GameIsNotEnded,
    InvalidTransaction,
    LedgerRetryExhausted,
    NoActiveGame,
    NoValidTransfer,
    TransactionSignatureAlreadyExists,
    ZeroGameTokenSupply,
)
from src.ou_common.response import PageMeta, error_response, success_response


class TestAppError:
    def test_base_error(self) -> None:
        err = AppError(code=9002, message="Internal error")
        assert err.code == 9002
        assert err.message == "Internal error"
        assert err.http_status == 500

    def test_is_exception(self) -> None:
        assert isinstance(AppError(code=1, message="x"), Exception)


class TestSpecificErrors:
    def test_no_active_game(self) -> None:
        err = NoActiveGame()
        assert err.code == 3001
        assert err.http_status == 404

    def test_game_not_ended_detail(self) -> None:
        assert GameIsNotEnded(7).message == "Game 7 is not ended"
        assert GameIsNotEnded(7, "is not settled yet").message == "Game 7 is not settled yet"

    def test_zero_supply(self) -> None:
        err = ZeroGameTokenSupply(3, "under")
        assert err.code == 3005
        assert "under" in err.message

    def test_duplicate_signature(self) -> None:
        err = TransactionSignatureAlreadyExists("abc")
        assert err.code == 4001
        assert err.http_status == 409
        assert "abc" in err.message

    def test_invalid_transaction(self) -> None:
        err = InvalidTransaction("abc", "wrong mint")
        assert err.code == 4003
        assert "wrong mint" in err.message

    def test_no_valid_transfer(self) -> None:
        assert NoValidTransfer().code == 4006

    def test_retry_exhausted(self) -> None:
        err = LedgerRetryExhausted("buy", 3)
        assert err.code == 9003
        assert err.http_status == 503
        assert "3 attempts" in err.message


class TestApiResponse:
    def test_success(self) -> None:
        resp = success_response({"id": 1})
        assert resp.code == 0
        assert resp.message == "success"
        assert resp.data == {"id": 1}

    def test_error(self) -> None:
        resp = error_response(4006, "No valid transfer")
        assert resp.code == 4006
        assert resp.data is None

    def test_serialization(self) -> None:
        d = success_response([]).model_dump()
        assert set(d) >= {"code", "message", "data", "timestamp", "request_id"}


class TestPageMeta:
    def test_last_page_rounds_up(self) -> None:
        meta = PageMeta.build(total=21, page=2, limit=10)
        assert meta.last_page == 3
        assert meta.current_page == 2
        assert meta.per_page == 10

    def test_empty_has_one_page(self) -> None:
        assert PageMeta.build(total=0, page=1, limit=10).last_page == 1
