"""
REST / HTTP API server for PegVault.

Built on ``aiohttp`` and started alongside a :class:`Deployment`.

Endpoints
---------
GET  /health                  Deep health check (price, reserve drift)
GET  /status                  Vault, oracle and token summaries
GET  /price                   Oracle price and the vault's mirrored copy
GET  /price/history           Accepted oracle updates (?since=<ts>)
GET  /balance/{address}       TRX / USDT / TRST balances and allowance
GET  /quote/buy               ?currency=native|stable&amount=<units>
GET  /quote/sell              ?currency=native|stable&amount=<units>
GET  /events                  Event log (?name=&contract=&since=&limit=)
POST /tx/approve              Approve the vault to pull USDT
POST /tx/buy/native           Buy TRST with TRX
POST /tx/buy/stable           Buy TRST with USDT
POST /tx/sell/native          Sell TRST for TRX
POST /tx/sell/stable          Sell TRST for USDT
POST /tx/collect_fees         Fee collector / owner withdraws fees
POST /oracle/update           Bounded price update (updater / owner)
POST /oracle/force_update     Unbounded price update (owner)

Signed requests
---------------
Every POST body is an envelope produced by ``Wallet.sign_request``::

    {"caller": "T...", "public_key": "04...", "nonce": 7,
     "payload": {"action": "buy_native", "value": 1000000},
     "signature": "30..."}

The caller is taken from the signature, never from the payload.  The
payload must name the action of the route it is posted to, and each
caller's nonce must strictly increase.

Security
--------
- API-key authentication on POST endpoints via ``X-API-Key`` header only.
  Timing-safe comparison via ``hmac.compare_digest``.
- Per-IP token-bucket rate limiter (configurable RPM).
- CORS middleware (origins configurable via ``cors_origins``).
- Request body size cap (``max_body_bytes``).

Usage:
    api = APIServer(deployment, host="127.0.0.1", port=8080)
    await api.start()    # call inside existing event loop
    ...
    await api.stop()
"""

from __future__ import annotations

import hmac
import json
import logging
import time
from collections import defaultdict
from typing import TYPE_CHECKING, Any, Callable

from aiohttp import web

from pegvault_core.errors import RateLimited, Unauthorized, VaultError
from pegvault_core.vault import CURRENCIES
from pegvault_core.wallet import verify_request

if TYPE_CHECKING:
    from pegvault_core.config import APIConfig
    from pegvault_core.deploy import Deployment

logger = logging.getLogger("pegvault.api")

DEFAULT_EVENT_LIMIT = 100
MAX_EVENT_LIMIT = 1000


# ═══════════════════════════════════════════════════════════════════
#  Input helpers
# ═══════════════════════════════════════════════════════════════════

def _safe_int(value: Any, name: str = "value") -> int:
    """Convert *value* to a non-negative int, rejecting floats and bools."""
    if isinstance(value, bool) or isinstance(value, float):
        raise web.HTTPBadRequest(text=f"{name} must be an integer")
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise web.HTTPBadRequest(text=f"{name} must be an integer")
    if n < 0:
        raise web.HTTPBadRequest(text=f"{name} must be non-negative")
    return n


def _currency(value: Any) -> str:
    if value not in CURRENCIES:
        raise web.HTTPBadRequest(text=f"currency must be one of {', '.join(CURRENCIES)}")
    return value


def _error_response(exc: VaultError) -> web.Response:
    """Map a rejected operation onto an HTTP status and JSON body."""
    if isinstance(exc, Unauthorized):
        status = 403
    elif isinstance(exc, RateLimited):
        status = 429
    else:
        status = 400
    body: dict[str, Any] = {"error": type(exc).__name__, "message": str(exc)}
    if isinstance(exc, RateLimited) and exc.retry_at is not None:
        body["retry_at"] = exc.retry_at
    return web.json_response(body, status=status)


def _json_dumps(obj: Any) -> str:
    """JSON serialiser that handles non-standard types."""
    return json.dumps(obj, default=str)


# ═══════════════════════════════════════════════════════════════════
#  Rate Limiter (per-IP token bucket)
# ═══════════════════════════════════════════════════════════════════

class _TokenBucket:
    """Simple per-IP token-bucket rate limiter."""

    __slots__ = ("_buckets", "_rpm")

    def __init__(self, rpm: int):
        self._rpm = rpm  # 0 = unlimited
        # ip -> (tokens, last_refill_timestamp)
        self._buckets: dict[str, list[float]] = defaultdict(lambda: [float(rpm), time.monotonic()])

    def allow(self, ip: str) -> bool:
        if self._rpm <= 0:
            return True
        bucket = self._buckets[ip]
        now = time.monotonic()
        elapsed = now - bucket[1]
        bucket[0] = min(float(self._rpm), bucket[0] + elapsed * (self._rpm / 60.0))
        bucket[1] = now
        if bucket[0] >= 1.0:
            bucket[0] -= 1.0
            return True
        return False


# ═══════════════════════════════════════════════════════════════════
#  Middleware factories
# ═══════════════════════════════════════════════════════════════════

def _make_rate_limit_middleware(bucket: _TokenBucket):
    """aiohttp middleware that enforces per-IP rate limits."""

    @web.middleware
    async def rate_limit_middleware(request: web.Request, handler):
        ip = request.remote or "unknown"
        if not bucket.allow(ip):
            raise web.HTTPTooManyRequests(
                text="Rate limit exceeded. Try again later.",
                headers={"Retry-After": "5"},
            )
        return await handler(request)

    return rate_limit_middleware


def _make_api_key_middleware(api_key: str):
    """aiohttp middleware that requires an API key on POST/PUT/DELETE.

    Only reads the key from the ``X-API-Key`` header, never from query
    params.
    """

    @web.middleware
    async def api_key_middleware(request: web.Request, handler):
        if request.method in ("POST", "PUT", "DELETE"):
            key = request.headers.get("X-API-Key", "")
            if not hmac.compare_digest(key, api_key):
                raise web.HTTPUnauthorized(text="Invalid or missing API key")
        return await handler(request)

    return api_key_middleware


def _make_cors_middleware(origins: list[str]):
    """aiohttp middleware that adds CORS headers for listed origins.

    The ``*`` wildcard is not supported.
    """

    allowed = set(origins) if origins else set()
    allowed.discard("*")

    @web.middleware
    async def cors_middleware(request: web.Request, handler):
        origin = request.headers.get("Origin", "")
        if request.method == "OPTIONS":
            resp = web.Response(status=204)
        else:
            resp = await handler(request)

        if origin in allowed:
            resp.headers["Access-Control-Allow-Origin"] = origin
            resp.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
            resp.headers["Access-Control-Allow-Headers"] = "Content-Type, X-API-Key"
            resp.headers["Access-Control-Max-Age"] = "3600"
        return resp

    return cors_middleware


class APIServer:
    """Thin aiohttp wrapper around a running Deployment."""

    def __init__(
        self,
        deployment: Deployment,
        host: str = "127.0.0.1",
        port: int = 8080,
        *,
        api_config: APIConfig | None = None,
    ):
        self.deployment = deployment
        self.host = host
        self.port = port
        self._api_config = api_config
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        # caller address -> last accepted nonce
        self._nonces: dict[str, int] = {}

    # ── lifecycle ────────────────────────────────────────────────

    def build_app(self) -> web.Application:
        middlewares: list = []
        max_body = 65_536

        if self._api_config is not None:
            cfg = self._api_config
            max_body = cfg.max_body_bytes
            if cfg.rate_limit_rpm > 0:
                middlewares.append(_make_rate_limit_middleware(_TokenBucket(cfg.rate_limit_rpm)))
            if cfg.cors_origins:
                middlewares.append(_make_cors_middleware(cfg.cors_origins))
            if cfg.api_key:
                middlewares.append(_make_api_key_middleware(cfg.api_key))

        app = web.Application(middlewares=middlewares, client_max_size=max_body)
        self._register_routes(app)
        self._app = app
        return app

    async def start(self) -> None:
        app = self.build_app()
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"API listening on http://{self.host}:{self.port}")

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()

    # ── routes ───────────────────────────────────────────────────

    def _register_routes(self, app: web.Application) -> None:
        app.router.add_get("/health", self._health)
        app.router.add_get("/status", self._status)
        app.router.add_get("/price", self._price)
        app.router.add_get("/price/history", self._price_history)
        app.router.add_get("/balance/{address}", self._balance)
        app.router.add_get("/quote/buy", self._quote_buy)
        app.router.add_get("/quote/sell", self._quote_sell)
        app.router.add_get("/events", self._events)
        # Signed transactions
        app.router.add_post("/tx/approve", self._tx_approve)
        app.router.add_post("/tx/buy/native", self._tx_buy_native)
        app.router.add_post("/tx/buy/stable", self._tx_buy_stable)
        app.router.add_post("/tx/sell/native", self._tx_sell_native)
        app.router.add_post("/tx/sell/stable", self._tx_sell_stable)
        app.router.add_post("/tx/collect_fees", self._tx_collect_fees)
        # Oracle feed
        app.router.add_post("/oracle/update", self._oracle_update)
        app.router.add_post("/oracle/force_update", self._oracle_force_update)

    # ── query handlers ───────────────────────────────────────────

    async def _health(self, _request: web.Request) -> web.Response:
        """Deep health check: prices positive and no reserve shortfall."""
        d = self.deployment
        report = d.vault.reconcile()
        price_ok = d.vault.get_trx_price() > 0 and d.oracle.get_price() > 0
        reserves_ok = all(row["drift"] >= 0 for row in report.values())
        healthy = price_ok and reserves_ok
        return web.json_response({
            "ok": healthy,
            "chain_time": d.chain.now(),
            "events": len(d.chain.events),
            "checks": {
                "price": "ok" if price_ok else "degraded",
                "reserves": "ok" if reserves_ok else "degraded",
            },
            "reserves": report,
        }, status=200 if healthy else 503)

    async def _status(self, _request: web.Request) -> web.Response:
        return web.json_response(self.deployment.status(), dumps=_json_dumps)

    async def _price(self, _request: web.Request) -> web.Response:
        d = self.deployment
        return web.json_response({
            "oracle": d.oracle.price.to_dict(),
            "vault": d.vault.price.to_dict(),
            "next_update_allowed_at": d.oracle.next_update_allowed_at(),
        })

    async def _price_history(self, request: web.Request) -> web.Response:
        since = request.query.get("since")
        since_ts = _safe_int(since, "since") if since is not None else None
        points = self.deployment.oracle.price_history(since_ts)
        return web.json_response({
            "points": [{"timestamp": ts, "rate": rate} for ts, rate in points],
            "count": len(points),
        })

    async def _balance(self, request: web.Request) -> web.Response:
        address = request.match_info["address"]
        return web.json_response(self.deployment.balances(address))

    async def _quote(self, request: web.Request, side: str) -> web.Response:
        currency = _currency(request.query.get("currency", ""))
        amount = _safe_int(request.query.get("amount"), "amount")
        vault = self.deployment.vault
        try:
            if side == "buy":
                quote = vault.quote_buy(currency, amount)
            else:
                quote = vault.quote_sell(currency, amount)
        except VaultError as exc:
            return _error_response(exc)
        return web.json_response(quote.to_dict())

    async def _quote_buy(self, request: web.Request) -> web.Response:
        return await self._quote(request, "buy")

    async def _quote_sell(self, request: web.Request) -> web.Response:
        return await self._quote(request, "sell")

    async def _events(self, request: web.Request) -> web.Response:
        q = request.query
        since = _safe_int(q["since"], "since") if "since" in q else None
        limit = min(_safe_int(q.get("limit", DEFAULT_EVENT_LIMIT), "limit"),
                    MAX_EVENT_LIMIT)
        events = self.deployment.chain.events.query(
            name=q.get("name"), contract=q.get("contract"), since=since)
        events = events[-limit:] if limit else []
        return web.json_response(
            {"events": [e.to_dict() for e in events], "count": len(events)},
            dumps=_json_dumps,
        )

    # ── signed request plumbing ──────────────────────────────────

    async def _authenticate(self, request: web.Request,
                            action: str) -> tuple[str, dict]:
        """Verify the envelope, consume its nonce, return ``(caller, payload)``."""
        try:
            body = await request.json()
        except Exception as exc:
            raise web.HTTPBadRequest(text="Invalid JSON body") from exc
        if not isinstance(body, dict):
            raise web.HTTPBadRequest(text="Request body must be an object")

        caller = verify_request(body)
        payload = body["payload"]
        if payload.get("action") != action:
            raise Unauthorized(f"signed action does not match {action}")
        nonce = body["nonce"]
        last = self._nonces.get(caller, 0)
        if nonce <= last:
            raise Unauthorized(f"stale nonce {nonce}, last accepted {last}")
        self._nonces[caller] = nonce
        return caller, payload

    async def _signed(self, request: web.Request, action: str,
                      run: Callable[[str, dict], Any]) -> web.Response:
        try:
            caller, payload = await self._authenticate(request, action)
            result = run(caller, payload)
        except VaultError as exc:
            logger.info(f"{action} rejected: {type(exc).__name__}: {exc}")
            return _error_response(exc)
        resp: dict[str, Any] = {"status": "accepted", "action": action,
                                "caller": caller}
        if result is not None:
            resp["result"] = result
        return web.json_response(resp, dumps=_json_dumps)

    # ── transaction handlers ─────────────────────────────────────

    async def _tx_approve(self, request: web.Request) -> web.Response:
        """Body payload: {"action": "approve", "amount": <units>}"""
        d = self.deployment

        def run(caller: str, p: dict) -> Any:
            amount = _safe_int(p.get("amount"), "amount")
            return d.stable.approve(caller, d.vault.address, amount)

        return await self._signed(request, "approve", run)

    async def _tx_buy_native(self, request: web.Request) -> web.Response:
        """Body payload: {"action": "buy_native", "value": <sun>}"""
        vault = self.deployment.vault
        return await self._signed(
            request, "buy_native",
            lambda caller, p: {"minted": vault.buy_with_native(
                caller, _safe_int(p.get("value"), "value"))},
        )

    async def _tx_buy_stable(self, request: web.Request) -> web.Response:
        vault = self.deployment.vault
        return await self._signed(
            request, "buy_stable",
            lambda caller, p: {"minted": vault.buy_with_stable(
                caller, _safe_int(p.get("amount"), "amount"))},
        )

    async def _tx_sell_native(self, request: web.Request) -> web.Response:
        vault = self.deployment.vault
        return await self._signed(
            request, "sell_native",
            lambda caller, p: {"paid": vault.sell_for_native(
                caller, _safe_int(p.get("amount"), "amount"))},
        )

    async def _tx_sell_stable(self, request: web.Request) -> web.Response:
        vault = self.deployment.vault
        return await self._signed(
            request, "sell_stable",
            lambda caller, p: {"paid": vault.sell_for_stable(
                caller, _safe_int(p.get("amount"), "amount"))},
        )

    async def _tx_collect_fees(self, request: web.Request) -> web.Response:
        """Body payload: {"action": "collect_fees", "native_amount": n, "stable_amount": m}"""
        vault = self.deployment.vault

        def run(caller: str, p: dict) -> Any:
            vault.collect_fees(
                caller,
                _safe_int(p.get("native_amount", 0), "native_amount"),
                _safe_int(p.get("stable_amount", 0), "stable_amount"),
            )
            return {"fee_collector": vault.fee_collector}

        return await self._signed(request, "collect_fees", run)

    async def _oracle_update(self, request: web.Request) -> web.Response:
        """Body payload: {"action": "update_price", "rate": <scaled rate>}"""
        oracle = self.deployment.oracle

        def run(caller: str, p: dict) -> Any:
            oracle.update_price(caller, _safe_int(p.get("rate"), "rate"))
            return oracle.price.to_dict()

        return await self._signed(request, "update_price", run)

    async def _oracle_force_update(self, request: web.Request) -> web.Response:
        oracle = self.deployment.oracle

        def run(caller: str, p: dict) -> Any:
            oracle.force_update_price(caller, _safe_int(p.get("rate"), "rate"))
            return oracle.price.to_dict()

        return await self._signed(request, "force_update_price", run)
