"""Storefront HTTP server with custom domain routing."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from aiohttp import web
from yarl import URL

from tiangge.core.config import ServerConfig
from tiangge.domains import DomainRegistry, txt_record_name
from tiangge.errors import DomainError, InternalError, ValidationError
from tiangge.observability.metrics import DOMAIN_OPERATIONS, generate_metrics, get_content_type
from tiangge.routing import RouteTable, RoutingAction, TenantResolver
from tiangge.security import EntitlementGate, TenantIdentity

logger = structlog.get_logger()

ContentHandler = Callable[[web.Request], Awaitable[web.StreamResponse]]
ApiAction = Callable[[web.Request, TenantIdentity], Awaitable[web.Response]]

FORWARDED_HOST_HEADER = "X-Forwarded-Host"
TENANT_SLUG_KEY = web.RequestKey("tenant_slug", str)


class StorefrontServer:
    """Serves the custom domain API and routes visitor traffic by hostname."""

    def __init__(
        self,
        config: ServerConfig,
        registry: DomainRegistry,
        gate: EntitlementGate,
        resolver: TenantResolver | None = None,
        content_handler: ContentHandler | None = None,
        route_table: RouteTable | None = None,
        require_premium_for_verify: bool = False,
    ) -> None:
        self.config = config
        self.registry = registry
        self.gate = gate
        self.resolver = resolver or TenantResolver(
            registry,
            platform_domain=config.platform_domain,
            local_hosts=config.local_hosts,
            route_table=route_table,
            platform_scheme=config.platform_scheme,
        )
        self.content_handler: ContentHandler = content_handler or self._handle_storefront
        self.require_premium_for_verify = require_premium_for_verify
        self._runner: web.AppRunner | None = None

    def build_app(self) -> web.Application:
        """Create the aiohttp application with the routing middleware first."""
        app = web.Application(middlewares=[self._tenant_routing_middleware])
        app.router.add_post("/api/custom-domain/add", self._handle_add)
        app.router.add_delete("/api/custom-domain/remove", self._handle_remove)
        app.router.add_get("/api/custom-domain/status", self._handle_status)
        app.router.add_post("/api/custom-domain/verify", self._handle_verify)
        app.router.add_put("/api/custom-domain/enabled", self._handle_enabled)
        app.router.add_get("/health", self._handle_health_check)
        if self.config.metrics_enabled:
            app.router.add_get("/metrics", self._handle_metrics)
        app.router.add_route("*", "/{path:.*}", self._dispatch_content)
        return app

    async def start(self) -> None:
        """Start serving on the configured bind address."""
        app = self.build_app()
        self._runner = web.AppRunner(app)
        await self._runner.setup()

        host, port = self._parse_bind(self.config.bind)
        site = web.TCPSite(self._runner, host, port)
        await site.start()
        logger.info(
            "Storefront server started",
            host=host,
            port=port,
            platform_domain=self.config.platform_domain,
        )

    def _parse_bind(self, bind: str) -> tuple[str, int]:
        """Parse bind address into host and port."""
        if ":" in bind:
            host, port = bind.rsplit(":", 1)
            return host, int(port)
        return "0.0.0.0", int(bind)

    async def stop(self) -> None:
        """Stop the server gracefully."""
        logger.info("Stopping storefront server...")
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        await self.gate.close()
        logger.info("Storefront server stopped")

    @web.middleware
    async def _tenant_routing_middleware(
        self, request: web.Request, handler: Callable[[web.Request], Awaitable[web.StreamResponse]]
    ) -> web.StreamResponse:
        decision = await self.resolver.resolve(
            request.host,
            request.path,
            request.rel_url.raw_query_string,
            raw_path=request.rel_url.raw_path,
        )

        if decision.action is RoutingAction.PASS_THROUGH:
            return await handler(request)

        if decision.action is RoutingAction.REDIRECT:
            raise web.HTTPFound(decision.target or self.resolver.platform_root_url)

        headers = request.headers.copy()
        headers[FORWARDED_HOST_HEADER] = request.host
        rewritten = request.clone(rel_url=URL(decision.target, encoded=True), headers=headers)
        rewritten[TENANT_SLUG_KEY] = decision.tenant_slug
        return await self.content_handler(rewritten)

    async def _dispatch_content(self, request: web.Request) -> web.StreamResponse:
        return await self.content_handler(request)

    async def _handle_storefront(self, request: web.Request) -> web.Response:
        """Placeholder storefront: reports which store and page were requested."""
        slug, _, subpath = request.path.lstrip("/").partition("/")
        if not slug:
            return web.json_response({"success": True, "message": "Tiangge platform"})

        return web.json_response(
            {
                "success": True,
                "store": slug,
                "path": "/" + subpath,
                "query": request.query_string,
                "forwardedHost": request.headers.get(FORWARDED_HOST_HEADER),
            }
        )

    async def _handle_health_check(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "healthy"})

    async def _handle_metrics(self, request: web.Request) -> web.Response:
        return web.Response(
            body=generate_metrics(),
            headers={"Content-Type": get_content_type()},
        )

    async def _run_api(
        self,
        operation: str,
        request: web.Request,
        action: ApiAction,
        premium: bool,
    ) -> web.Response:
        """Authenticate, check entitlement, run the action and map errors."""
        try:
            identity = await self.gate.authenticate(request.headers.get("Authorization"))
            if premium:
                identity.require_premium()
            response = await action(request, identity)
        except DomainError as e:
            DOMAIN_OPERATIONS.labels(operation=operation, status=e.kind).inc()
            if e.status >= 500:
                logger.warning("Custom domain operation failed", operation=operation, error=e.message)
            return web.json_response(e.to_dict(), status=e.status)
        except Exception:
            logger.exception("Unexpected error in custom domain operation", operation=operation)
            DOMAIN_OPERATIONS.labels(operation=operation, status=InternalError.kind).inc()
            error = InternalError("Something went wrong. Please try again.")
            return web.json_response(error.to_dict(), status=error.status)

        DOMAIN_OPERATIONS.labels(operation=operation, status="ok").inc()
        return response

    async def _read_json(self, request: web.Request) -> dict[str, Any]:
        try:
            data = await request.json()
        except ValueError as e:
            raise ValidationError("Invalid JSON body.") from e
        if not isinstance(data, dict):
            raise ValidationError("Invalid JSON body.")
        return data

    async def _read_domain(self, request: web.Request) -> str:
        domain = (await self._read_json(request)).get("domain")
        if not domain or not isinstance(domain, str):
            raise ValidationError("Domain is required.")
        return domain

    async def _handle_add(self, request: web.Request) -> web.Response:
        async def action(request: web.Request, identity: TenantIdentity) -> web.Response:
            domain = await self._read_domain(request)
            binding = await self.registry.register(
                identity.tenant_id, domain, tenant_slug=identity.slug
            )
            return web.json_response(
                {
                    "success": True,
                    "message": "Custom domain added. Please add the TXT record to your DNS settings.",
                    "verificationCode": binding.verification_token,
                    "txtRecordName": txt_record_name(binding.domain, self.registry.record_prefix),
                }
            )

        return await self._run_api("add", request, action, premium=True)

    async def _handle_remove(self, request: web.Request) -> web.Response:
        async def action(request: web.Request, identity: TenantIdentity) -> web.Response:
            await self.registry.unregister(identity.tenant_id)
            return web.json_response(
                {"success": True, "message": "Custom domain removed successfully."}
            )

        return await self._run_api("remove", request, action, premium=True)

    async def _handle_status(self, request: web.Request) -> web.Response:
        async def action(request: web.Request, identity: TenantIdentity) -> web.Response:
            summary = await self.registry.status(identity.tenant_id)
            if summary is None:
                return web.json_response(
                    {"success": True, "message": "No custom domain configured.", "status": None}
                )
            return web.json_response(
                {
                    "success": True,
                    "message": "Custom domain status retrieved.",
                    "status": summary.to_dict(),
                }
            )

        return await self._run_api("status", request, action, premium=False)

    async def _handle_verify(self, request: web.Request) -> web.Response:
        async def action(request: web.Request, identity: TenantIdentity) -> web.Response:
            domain = await self._read_domain(request)
            outcome = await self.registry.verify(identity.tenant_id, domain)
            if outcome.is_verified:
                return web.json_response(
                    {
                        "success": True,
                        "message": "Domain verified successfully! Please update your A/CNAME records.",
                        "isVerified": True,
                        "dnsInstructions": outcome.dns_instructions,
                        "attemptsRemaining": outcome.attempts_remaining,
                    }
                )
            return web.json_response(
                {
                    "success": False,
                    "message": (
                        "Domain verification failed. Please ensure the TXT record "
                        "is correctly set and has propagated."
                    ),
                    "isVerified": False,
                    "attemptsRemaining": outcome.attempts_remaining,
                },
                status=400,
            )

        return await self._run_api(
            "verify", request, action, premium=self.require_premium_for_verify
        )

    async def _handle_enabled(self, request: web.Request) -> web.Response:
        async def action(request: web.Request, identity: TenantIdentity) -> web.Response:
            enabled = (await self._read_json(request)).get("enabled")
            if not isinstance(enabled, bool):
                raise ValidationError("Field 'enabled' must be true or false.")
            binding = await self.registry.set_enabled(identity.tenant_id, enabled)
            return web.json_response(
                {
                    "success": True,
                    "message": "Custom domain enabled." if enabled else "Custom domain disabled.",
                    "customDomainEnabled": binding.enabled,
                }
            )

        return await self._run_api("enable", request, action, premium=True)

