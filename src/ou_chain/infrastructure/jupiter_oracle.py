"""JupiterOracle: concrete implementation of PriceOracle over the Jupiter HTTP APIs.

SOL price of a token: quote of one whole token -> SOL.
USD price: SOL price x SOL/USD, the latter cached in Redis for
PRICE_CACHE_TTL seconds.
"""

import logging
from decimal import Decimal

import httpx
import redis.asyncio as aioredis

from config.settings import settings
from src.ou_chain.domain.models import Quote, TokenMetadata, TokenPrice
from src.ou_common.errors import FailedGetPriceInUsd, InvalidContractAddress, RouteNotFound
from src.ou_common.lamports import LAMPORTS_PER_SOL

logger = logging.getLogger(__name__)

SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
_SOL_USD_CACHE_KEY = "oracle:sol_usd"


class JupiterOracle:
    def __init__(
        self,
        http: httpx.AsyncClient,
        redis: aioredis.Redis | None = None,
        cache_ttl: int = 30,
    ) -> None:
        self._http = http
        self._redis = redis
        self._cache_ttl = cache_ttl

    async def close(self) -> None:
        await self._http.aclose()

    async def quote(self, input_mint: str, output_mint: str, amount: int) -> Quote:
        response = await self._http.get(
            f"{settings.JUPITER_HOST}/quote",
            params={
                "inputMint": input_mint,
                "outputMint": output_mint,
                "amount": str(amount),
            },
        )
        if "NO_ROUTES_FOUND" in response.text or "COULD_NOT_FIND_ANY_ROUTE" in response.text:
            raise RouteNotFound(input_mint, output_mint)
        response.raise_for_status()
        body = response.json()
        return Quote(
            in_amount=int(body["inAmount"]),
            out_amount=int(body["outAmount"]),
            route=body.get("routePlan", []),
        )

    async def get_prices(self, tokens: list[str], vs_token: str) -> dict[str, float]:
        response = await self._http.get(
            settings.JUPITER_PRICE_URL,
            params={"ids": ",".join(tokens), "vsToken": vs_token},
        )
        response.raise_for_status()
        data = response.json().get("data") or {}
        return {
            entry["id"]: float(entry["price"])
            for entry in data.values()
            if entry and entry.get("price") is not None
        }

    async def get_token_metadata(self, mint: str) -> TokenMetadata:
        try:
            response = await self._http.get(f"{settings.JUPITER_TOKEN_URL}/{mint}")
            response.raise_for_status()
            body = response.json()
            return TokenMetadata(
                name=body.get("name"),
                symbol=body.get("symbol"),
                decimals=int(body["decimals"]),
            )
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            logger.warning("Token metadata lookup failed for %s: %s", mint, e)
            raise InvalidContractAddress(mint) from e

    async def _sol_usd(self) -> Decimal:
        if self._redis is not None:
            cached = await self._redis.get(_SOL_USD_CACHE_KEY)
            if cached:
                return Decimal(cached)
        prices = await self.get_prices([SOL_MINT], USDC_MINT)
        sol_usd = Decimal(str(prices.get(SOL_MINT, 0)))
        if sol_usd > 0 and self._redis is not None:
            await self._redis.set(_SOL_USD_CACHE_KEY, str(sol_usd), ex=self._cache_ttl)
        return sol_usd

    async def get_token_price(self, mint: str, decimals: int) -> TokenPrice:
        quote = await self.quote(mint, SOL_MINT, 10**decimals)
        sol = Decimal(quote.out_amount) / LAMPORTS_PER_SOL

        sol_usd = await self._sol_usd()
        if sol_usd == 0:
            raise FailedGetPriceInUsd()

        return TokenPrice(sol=sol, usd=sol * sol_usd)
