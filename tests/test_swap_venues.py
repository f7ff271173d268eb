from __future__ import annotations

import httpx
import pytest

from sniper.config.settings import NATIVE_MINT, PipelineConfig
from sniper.connectors.http import ServiceClient, ServiceHTTPError
from sniper.connectors.swap_venues import AggregatorVenue, AmmVenue, Quote, QuoteError, QuoteErrorKind
from sniper.pipeline.route_prover import RouteProven, RouteUnproven, SwapRouteProver
from sniper.pipeline.route_validator import RouteValidator

MINT = "TokenMint" + "1" * 34
PRIMARY = "https://primary.example/v6"
FALLBACK = "https://fallback.example/swap/v1"


def _client(handler, name: str = "test", base_url: str = "") -> ServiceClient:
    return ServiceClient(
        name,
        base_url=base_url,
        retry_base_sec=0.0,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_service_client_retries_server_errors() -> None:
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        if len(calls) == 1:
            return httpx.Response(503, text="busy")
        return httpx.Response(200, json={"ok": True})

    client = _client(handler, base_url="https://svc.example")
    assert await client.get_json("/ping") == {"ok": True}
    assert len(calls) == 2
    await client.close()


@pytest.mark.asyncio
async def test_service_client_does_not_retry_client_errors() -> None:
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(404, text="missing")

    client = _client(handler, base_url="https://svc.example")
    with pytest.raises(ServiceHTTPError) as excinfo:
        await client.get_json("/missing")
    assert excinfo.value.not_found
    assert len(calls) == 1
    await client.close()


@pytest.mark.asyncio
async def test_aggregator_falls_through_rate_limit_to_fallback() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "primary.example":
            return httpx.Response(429, text="slow down")
        return httpx.Response(200, json={"outAmount": "123456", "priceImpactPct": "0.4"})

    venue = AggregatorVenue(_client(handler), [PRIMARY, FALLBACK])
    quote = await venue.quote(NATIVE_MINT, MINT, 1_000_000, 1500)
    assert isinstance(quote, Quote)
    assert quote.out_amount == 123456
    assert quote.endpoint == FALLBACK


@pytest.mark.asyncio
async def test_aggregator_bad_request_is_definitive_no_route() -> None:
    hosts: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        hosts.append(request.url.host)
        return httpx.Response(400, json={"error": "Could not find any route"})

    venue = AggregatorVenue(_client(handler), [PRIMARY, FALLBACK])
    outcome = await venue.quote(NATIVE_MINT, MINT, 1_000_000, 1500)
    assert isinstance(outcome, QuoteError)
    assert outcome.kind == QuoteErrorKind.NO_ROUTE
    assert hosts == ["primary.example"]


@pytest.mark.asyncio
async def test_amm_unsuccessful_compute_is_no_route() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": False, "msg": "ROUTE_NOT_FOUND"})

    venue = AmmVenue(_client(handler, base_url="https://amm.example"))
    outcome = await venue.quote(NATIVE_MINT, MINT, 1_000_000, 1500)
    assert isinstance(outcome, QuoteError)
    assert outcome.kind == QuoteErrorKind.NO_ROUTE
    assert outcome.transient is False


@pytest.mark.asyncio
async def test_amm_quote_reads_output_decimals() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/compute/swap-base-in"
        return httpx.Response(
            200,
            json={"success": True, "data": {"outputAmount": "5000000", "outputDecimals": 6, "priceImpactPct": 1.2}},
        )

    venue = AmmVenue(_client(handler, base_url="https://amm.example"))
    quote = await venue.quote(NATIVE_MINT, MINT, 1_000_000, 1500)
    assert isinstance(quote, Quote)
    assert quote.output_decimals == 6
    assert quote.price_impact_pct == 1.2


@pytest.mark.asyncio
async def test_route_prover_uses_second_venue_when_first_has_no_route() -> None:
    def aggregator(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, text="no route")

    def amm(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "data": {"outputAmount": "777"}})

    prover = SwapRouteProver(
        [
            AggregatorVenue(_client(aggregator), [PRIMARY]),
            AmmVenue(_client(amm, base_url="https://amm.example")),
        ],
        PipelineConfig(),
    )
    proof = await prover.prove(MINT)
    assert isinstance(proof, RouteProven)
    assert proof.venue == "amm"
    assert proof.output_amount == 777


@pytest.mark.asyncio
async def test_route_prover_definitive_only_when_every_venue_says_no_route() -> None:
    def no_route(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, text="no route")

    def down(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    definitive = SwapRouteProver(
        [AggregatorVenue(_client(no_route), [PRIMARY]), AmmVenue(_client(no_route, base_url="https://amm.example"))]
    )
    proof = await definitive.prove(MINT)
    assert isinstance(proof, RouteUnproven)
    assert proof.definitive is True
    assert proof.error.startswith("No route: ")

    mixed = SwapRouteProver(
        [AggregatorVenue(_client(no_route), [PRIMARY]), AmmVenue(_client(down, base_url="https://amm.example"))]
    )
    proof = await mixed.prove(MINT)
    assert isinstance(proof, RouteUnproven)
    assert proof.definitive is False
    assert proof.error.startswith("Route check failed: ")


@pytest.mark.asyncio
async def test_route_validator_checks_venues_in_parallel() -> None:
    def aggregator(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"outAmount": "10"})

    def amm(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": False})

    validator = RouteValidator(
        [AggregatorVenue(_client(aggregator), [PRIMARY]), AmmVenue(_client(amm, base_url="https://amm.example"))]
    )
    result = await validator.validate(MINT)
    assert result.has_route is True
    assert result.venues == {"aggregator": True, "amm": False}
    assert result.source == "aggregator"


@pytest.mark.asyncio
async def test_route_validator_rejects_short_address() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    validator = RouteValidator(
        [AggregatorVenue(_client(handler), [PRIMARY]), AmmVenue(_client(handler, base_url="https://amm.example"))]
    )
    result = await validator.validate("short")
    assert result.has_route is False
    assert result.error == "Invalid token address"
