"""
Jupiter API client: route quotes and swap instruction building.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .errors import BuildTransactionFailed, QuoteUnavailable

logger = logging.getLogger(__name__)

# Jupiter answers 400 with one of these when no route exists
NO_ROUTE_MARKERS = ("could_not_find_any_route", "no routes found", "route not found")


class RateLimiter:
    """
    Minimum-interval rate limiter for Jupiter API requests.

    Requests from concurrent pair evaluations are serialized through one lock
    so the configured requests-per-second is never exceeded.
    """

    def __init__(self, requests_per_second: float = 1.0):
        """
        Args:
            requests_per_second: Maximum requests per second (0 disables limiting)
        """
        self.requests_per_second = requests_per_second
        self.min_interval = 1.0 / requests_per_second if requests_per_second > 0 else 0.0
        self._last_request_time = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self):
        """Wait until the next request slot is free."""
        async with self._lock:
            elapsed = time.monotonic() - self._last_request_time
            if elapsed < self.min_interval:
                await asyncio.sleep(self.min_interval - elapsed)
            self._last_request_time = time.monotonic()


@dataclass(frozen=True)
class RouteQuote:
    """
    One candidate route for a single leg.

    Amounts are integers in the token's smallest unit. raw keeps the provider
    payload because the swap builder needs it back verbatim.
    """
    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    price_impact_fraction: float
    venues: Tuple[str, ...] = ()
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False, repr=False)


@dataclass
class SwapAccountMeta:
    pubkey: str
    is_signer: bool
    is_writable: bool


@dataclass
class SwapInstruction:
    """Single instruction as returned by the swap-instructions endpoint."""
    program_id: str
    accounts: List[SwapAccountMeta]
    data: str  # base64


@dataclass
class SwapInstructions:
    """Materialized leg: everything needed to place it inside a v0 message."""
    setup_instructions: List[SwapInstruction]
    swap_instruction: SwapInstruction
    cleanup_instruction: Optional[SwapInstruction]
    address_lookup_tables: List[str]
    last_valid_block_height: int = 0


def _first_present(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def _to_int(value: Any) -> Optional[int]:
    """Parse an on-chain amount. Rejects bools and non-integral floats."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def _extract_venues(entry: Dict[str, Any]) -> Tuple[str, ...]:
    venues: List[str] = []
    for step in entry.get("routePlan") or []:
        label = (step.get("swapInfo") or {}).get("label")
        if label:
            venues.append(label)
    for market in entry.get("marketInfos") or []:
        label = market.get("label") or (market.get("amm") or {}).get("label") or market.get("id")
        if label:
            venues.append(label)
    return tuple(venues)


def normalize_route(
    entry: Dict[str, Any],
    input_mint: str,
    output_mint: str,
    amount: int
) -> Optional[RouteQuote]:
    """
    Map one provider route object to a RouteQuote.

    Returns None when the entry carries no usable integer output amount.
    priceImpactPct is read as a fraction (0.01 == 1%).
    """
    out_amount = _to_int(_first_present(entry, "outAmount", "outputAmount", "amountOut"))
    if out_amount is None or out_amount < 0:
        return None

    in_amount = _to_int(_first_present(entry, "inAmount", "inputAmount", "amountIn"))
    if in_amount is None:
        in_amount = amount

    impact_raw = _first_present(entry, "priceImpactPct", "priceImpact")
    try:
        price_impact = abs(float(impact_raw)) if impact_raw is not None else 0.0
    except (TypeError, ValueError):
        return None

    return RouteQuote(
        input_mint=entry.get("inputMint") or input_mint,
        output_mint=entry.get("outputMint") or output_mint,
        in_amount=in_amount,
        out_amount=out_amount,
        price_impact_fraction=price_impact,
        venues=_extract_venues(entry),
        raw=entry,
    )


def normalize_routes(
    payload: Any,
    input_mint: str,
    output_mint: str,
    amount: int
) -> List[RouteQuote]:
    """
    Single entry point from provider responses to RouteQuote.

    Accepts a bare quote object, a list of quotes, or a wrapper with a
    "routes" or "data" list. Result is ordered best output first.
    """
    if isinstance(payload, list):
        entries = payload
    elif isinstance(payload, dict):
        wrapped = _first_present(payload, "routes", "data")
        entries = wrapped if isinstance(wrapped, list) else [payload]
    else:
        return []

    routes = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        route = normalize_route(entry, input_mint, output_mint, amount)
        if route is None:
            logger.debug(f"Skipping route without a usable output amount: {list(entry.keys())}")
            continue
        routes.append(route)

    routes.sort(key=lambda r: r.out_amount, reverse=True)
    return routes


class JupiterClient:
    """Client for the Jupiter aggregator API."""

    PUBLIC_ENDPOINT = "https://lite-api.jup.ag"
    AUTH_ENDPOINT = "https://api.jup.ag"
    QUOTE_PATH = "/swap/v1/quote"
    SWAP_INSTRUCTIONS_PATH = "/swap/v1/swap-instructions"

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        requests_per_second: float = 1.0,
        max_retries_on_429: int = 3,
        backoff_base_seconds: float = 1.0,
        backoff_max_seconds: float = 30.0
    ):
        """
        Initialize Jupiter API client.

        Args:
            api_url: Explicit API base URL. Defaults to the public endpoint, or the
                authenticated one when api_key is set.
            api_key: Jupiter API key, sent as x-api-key
            timeout: Per-request timeout in seconds
            requests_per_second: Rate limit for Jupiter API requests
            max_retries_on_429: Maximum retries on 429 rate limit error
            backoff_base_seconds: Base backoff time for 429 retries
            backoff_max_seconds: Maximum backoff time for 429 retries
        """
        if api_url:
            self.api_url = api_url.rstrip('/')
        else:
            self.api_url = self.AUTH_ENDPOINT if api_key else self.PUBLIC_ENDPOINT

        self.api_key = api_key
        self.timeout = timeout
        self.rate_limiter = RateLimiter(requests_per_second=requests_per_second)
        self.max_retries_on_429 = max_retries_on_429
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds

        headers = {}
        if api_key:
            headers["x-api-key"] = api_key
        self.client = httpx.AsyncClient(timeout=timeout, headers=headers)

    def _retry_delay(self, response: httpx.Response, attempt: int) -> float:
        """Honour Retry-After when present, else exponential backoff."""
        retry_after = response.headers.get("Retry-After")
        if retry_after:
            try:
                return min(float(retry_after), self.backoff_max_seconds)
            except ValueError:
                pass
        return min(self.backoff_base_seconds * (2 ** attempt), self.backoff_max_seconds)

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """
        Send one request, retrying only on 429.

        Raises:
            httpx.HTTPStatusError: Non-2xx after retries
            httpx.HTTPError: Transport failures and timeouts
        """
        url = f"{self.api_url}{path}"
        for attempt in range(self.max_retries_on_429 + 1):
            await self.rate_limiter.acquire()
            response = await self.client.request(method, url, **kwargs)
            if response.status_code == 429 and attempt < self.max_retries_on_429:
                wait_time = self._retry_delay(response, attempt)
                logger.warning(
                    f"Rate limit exceeded (429) on {path}, "
                    f"retrying in {wait_time:.1f}s (attempt {attempt + 1}/{self.max_retries_on_429})"
                )
                await asyncio.sleep(wait_time)
                continue
            response.raise_for_status()
            return response
        # Unreachable: the last attempt either returns or raises
        raise RuntimeError("retry loop exited without a response")

    async def compute_routes(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int = 50
    ) -> List[RouteQuote]:
        """
        Get candidate routes for one leg.

        Args:
            input_mint: Input token mint address
            output_mint: Output token mint address
            amount: Input amount in smallest unit
            slippage_bps: Slippage tolerance in basis points

        Returns:
            Routes ordered best output first. Empty list means no liquidity.

        Raises:
            QuoteUnavailable: The API could not be reached or returned an error
        """
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": slippage_bps,
            "swapMode": "ExactIn",
        }
        started = time.monotonic()
        try:
            response = await self._request("GET", self.QUOTE_PATH, params=params)
            payload = response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            body = e.response.text or ""
            if status == 404 or (status == 400 and any(m in body.lower() for m in NO_ROUTE_MARKERS)):
                logger.debug(f"No route {input_mint[:8]}... -> {output_mint[:8]}... ({status})")
                return []
            raise QuoteUnavailable(
                f"Quote request failed with HTTP {status}: {body[:200]}",
                details={"status": status},
            ) from e
        except httpx.HTTPError as e:
            raise QuoteUnavailable(f"Quote request failed: {type(e).__name__}: {e}") from e
        except ValueError as e:
            raise QuoteUnavailable(f"Quote response is not valid JSON: {e}") from e

        routes = normalize_routes(payload, input_mint, output_mint, amount)
        if routes:
            best = routes[0]
            logger.debug(
                f"Quote {input_mint[:8]}... -> {output_mint[:8]}... in={best.in_amount} "
                f"out={best.out_amount} impact={best.price_impact_fraction:.4%} "
                f"via {'+'.join(best.venues) or 'unknown'} ({(time.monotonic() - started) * 1000:.0f}ms)"
            )
        return routes

    def _parse_instruction(self, data: Dict[str, Any]) -> SwapInstruction:
        accounts = []
        for account in data.get("accounts") or []:
            if not isinstance(account, dict):
                raise BuildTransactionFailed(
                    f"Account entry without signer/writable flags: {account!r}"
                )
            accounts.append(SwapAccountMeta(
                pubkey=account.get("pubkey", ""),
                is_signer=bool(account.get("isSigner", False)),
                is_writable=bool(account.get("isWritable", False)),
            ))
        program_id = data.get("programId")
        if not program_id:
            raise BuildTransactionFailed("Instruction without programId")
        return SwapInstruction(program_id=program_id, accounts=accounts, data=data.get("data", ""))

    def _quote_response_for(self, route: RouteQuote, slippage_bps: Optional[int]) -> Dict[str, Any]:
        """Return the raw quote, re-priced to slippage_bps when given."""
        quote_response = dict(route.raw)
        if slippage_bps is not None:
            quote_response["slippageBps"] = slippage_bps
            threshold = route.out_amount * (10_000 - slippage_bps) // 10_000
            quote_response["otherAmountThreshold"] = str(threshold)
        return quote_response

    async def build_swap(
        self,
        route: RouteQuote,
        signer_public_key: str,
        wrap_native_asset: bool = True,
        slippage_bps: Optional[int] = None
    ) -> SwapInstructions:
        """
        Materialize a route into instructions for atomic multi-leg assembly.

        Compute budget instructions are left out; the caller sets one budget
        for the combined transaction.

        Args:
            route: RouteQuote from compute_routes
            signer_public_key: Fee payer / swap owner (base58)
            wrap_native_asset: Wrap and unwrap SOL automatically
            slippage_bps: Execution slippage override

        Returns:
            SwapInstructions for this leg

        Raises:
            BuildTransactionFailed: The route cannot be materialized
        """
        if not route.raw:
            raise BuildTransactionFailed("Route has no provider payload to build from")

        payload: Dict[str, Any] = {
            "quoteResponse": self._quote_response_for(route, slippage_bps),
            "userPublicKey": signer_public_key,
            "wrapAndUnwrapSol": wrap_native_asset,
            "dynamicComputeUnitLimit": True,
            # Shared accounts break when two swaps sit in one transaction
            "useSharedAccounts": False,
        }

        try:
            response = await self._request("POST", self.SWAP_INSTRUCTIONS_PATH, json=payload)
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise BuildTransactionFailed(
                f"Swap instructions failed with HTTP {e.response.status_code}: {(e.response.text or '')[:200]}",
                details={"status": e.response.status_code},
            ) from e
        except httpx.HTTPError as e:
            raise BuildTransactionFailed(f"Swap instructions request failed: {type(e).__name__}: {e}") from e
        except ValueError as e:
            raise BuildTransactionFailed(f"Swap instructions response is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise BuildTransactionFailed("Swap instructions response is not an object")
        if data.get("error"):
            raise BuildTransactionFailed(f"Swap instructions error: {data['error']}")
        if not data.get("swapInstruction"):
            raise BuildTransactionFailed("Swap instructions response has no swapInstruction")

        cleanup = data.get("cleanupInstruction")
        instructions = SwapInstructions(
            setup_instructions=[self._parse_instruction(i) for i in data.get("setupInstructions") or []],
            swap_instruction=self._parse_instruction(data["swapInstruction"]),
            cleanup_instruction=self._parse_instruction(cleanup) if cleanup else None,
            address_lookup_tables=list(dict.fromkeys(data.get("addressLookupTableAddresses") or [])),
            last_valid_block_height=int(data.get("lastValidBlockHeight") or 0),
        )
        logger.debug(
            f"Swap instructions OK: {len(instructions.setup_instructions)} setup, 1 swap, "
            f"{1 if instructions.cleanup_instruction else 0} cleanup, "
            f"{len(instructions.address_lookup_tables)} ALTs"
        )
        return instructions

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()
