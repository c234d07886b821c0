# /anvil_harness/core/proxy.py
# The fixed client-facing endpoint. Every request is relayed to whichever
# simulator is active at the moment it arrives.
import json
from typing import Any

import aiohttp
from aiohttp import web

from anvil_harness.core.coordinator import SwitchCoordinator
from anvil_harness.core.errors import HarnessError, ProxyForwardError, UnknownChainError
from anvil_harness.core.logger import FORWARD_ERRORS, REQUESTS_FORWARDED, get_logger

log = get_logger(__name__)

SWITCH_CHAIN_METHOD = "wallet_switchEthereumChain"

# EIP-1193 / EIP-3326 error codes
UNRECOGNIZED_CHAIN = 4902
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

HOP_BY_HOP_HEADERS = frozenset({
    "connection", "keep-alive", "proxy-authenticate", "proxy-authorization",
    "te", "trailers", "transfer-encoding", "upgrade", "host",
})
CHUNK_SIZE = 64 * 1024
# Bodies are buffered so the interceptor can inspect them; aiohttp's own default is 1 MiB.
DEFAULT_MAX_BODY_SIZE = 256 * 1024 * 1024
# Only connecting is bounded; forwarded calls inherit the client's own timeout.
FORWARD_TIMEOUT = aiohttp.ClientTimeout(total=None, sock_connect=10)


def _rpc_error(request_id: Any, code: int, message: str) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


def _parse_chain_id(params: Any) -> int:
    chain_id = params[0]["chainId"]
    if isinstance(chain_id, str):
        return int(chain_id, 16) if chain_id.lower().startswith("0x") else int(chain_id)
    return int(chain_id)


def chain_switch_interceptor(coordinator: SwitchCoordinator):
    """Middleware answering wallet_switchEthereumChain by resetting onto that chain."""

    @web.middleware
    async def middleware(request: web.Request, handler):
        if request.method != "POST":
            return await handler(request)
        try:
            payload = json.loads(await request.read())
        except ValueError:
            return await handler(request)
        if not isinstance(payload, dict) or payload.get("method") != SWITCH_CHAIN_METHOD:
            return await handler(request)

        request_id = payload.get("id")
        try:
            chain_id = _parse_chain_id(payload.get("params"))
        except (KeyError, IndexError, TypeError, ValueError):
            return web.json_response(_rpc_error(request_id, INVALID_PARAMS, "Expected params [{chainId: <hex>}]"))

        log.debug("SWITCH_CHAIN_INTERCEPTED", chain_id=chain_id)
        try:
            await coordinator.reset(chain_id)
        except UnknownChainError as e:
            return web.json_response(_rpc_error(request_id, UNRECOGNIZED_CHAIN, str(e)))
        except HarnessError as e:
            return web.json_response(_rpc_error(request_id, INTERNAL_ERROR, str(e)))
        return web.json_response({"jsonrpc": "2.0", "id": request_id, "result": None})

    return middleware


class ForwardingProxy:
    def __init__(self, coordinator: SwitchCoordinator, host: str, port: int, max_body_size: int = DEFAULT_MAX_BODY_SIZE):
        self.coordinator = coordinator
        self.host = host
        self.port = port
        self.app = web.Application(middlewares=[chain_switch_interceptor(coordinator)], client_max_size=max_body_size)
        self.app.router.add_route("*", "/{tail:.*}", self.forward)
        self._runner: web.AppRunner | None = None
        self._session: aiohttp.ClientSession | None = None

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    async def start(self):
        self._session = aiohttp.ClientSession(auto_decompress=False, timeout=FORWARD_TIMEOUT)
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        try:
            await site.start()
        except OSError:
            await self.close()
            raise
        # Resolves the real port when 0 was requested.
        self.port = self._runner.addresses[0][1]
        log.info("FORWARDING_PROXY_STARTED", url=self.url)

    async def forward(self, request: web.Request) -> web.StreamResponse:
        body = await request.read()
        try:
            # Re-read on every request: a reset may have retargeted us.
            handle = self.coordinator.active_handle()
            upstream = await self._session.request(
                request.method,
                handle.url + request.rel_url.path_qs,
                headers={k: v for k, v in request.headers.items() if k.lower() not in HOP_BY_HOP_HEADERS},
                data=body,
                allow_redirects=False,
            )
        except (ProxyForwardError, aiohttp.ClientError) as e:
            return self._gateway_error(request, body, e)

        REQUESTS_FORWARDED.inc()
        log.debug("REQUEST_FORWARDED", method=request.method, path=request.path, chain_id=handle.chain_id)
        async with upstream:
            response = web.StreamResponse(status=upstream.status, reason=upstream.reason)
            for name, value in upstream.headers.items():
                if name.lower() not in HOP_BY_HOP_HEADERS:
                    response.headers.add(name, value)
            await response.prepare(request)
            async for chunk in upstream.content.iter_chunked(CHUNK_SIZE):
                await response.write(chunk)
            await response.write_eof()
        return response

    def _gateway_error(self, request: web.Request, body: bytes, error: Exception) -> web.Response:
        FORWARD_ERRORS.inc()
        error = error if isinstance(error, ProxyForwardError) else ProxyForwardError(f"Active simulator unreachable: {error}")
        log.error("PROXY_FORWARD_FAILED", path=request.path, active=self.coordinator.active, error=str(error))
        try:
            request_id = json.loads(body).get("id")
        except (ValueError, AttributeError):
            request_id = None
        return web.json_response(_rpc_error(request_id, INTERNAL_ERROR, str(error)), status=502)

    async def close(self):
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        if self._session is not None:
            await self._session.close()
            self._session = None
        log.info("FORWARDING_PROXY_STOPPED")
