"""Request router sitting between untrusted clients and the issue tracker.

Per request: CORS headers are computed, ``OPTIONS`` short-circuits, the route
is resolved (unknown path/method -> 404), write routes pass the rate limiter
and token classification before any upstream call, and whatever happens the
client receives a ``{"success": ..., "data" | "error": ...}`` envelope.

``Gateway.handle`` is synchronous and framework-neutral; ``issuegate.asgi``
adapts it to an ASGI server.
"""

from __future__ import annotations

import ipaddress
import json
import re
import time
import traceback
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .cache import (
    LATEST_VERSION_KEY,
    PATCH_NOTES_KEY,
    STATS_KEY,
    ResponseCache,
    issue_key,
    issues_key,
)
from .config import GatewayConfig
from .content import BugReport, average_resolution_time, latest_version, load_patch_notes
from .errors import (
    GatewayError,
    NotFound,
    RateLimited,
    UpstreamRejected,
    ValidationError,
    classify_error,
    redact,
)
from .github_rest import GitHubRestClient
from .logging import get_logger
from .mapping import CATEGORY_PREFIX, SEVERITY_PREFIX, STATUS_PREFIX, Column, to_label_delta
from .models import IssueFilter
from .observability import get_tracer
from .rate_limit import RateLimiter
from .stores import Clock, MemoryStore
from .tokens import Attribution, TokenStore

JSON_CONTENT_TYPE = "application/json"
ALLOWED_METHODS = "GET, POST, PUT, DELETE, OPTIONS"
ALLOWED_HEADERS = "Content-Type, X-App-Token, Authorization"
CORS_MAX_AGE = "86400"
TOKEN_HEADER = "X-App-Token"
MAX_LABELS = 100

_LINK_LAST = re.compile(r"[?&]page=(\d+)[^>]*>;\s*rel=\"last\"")
_tracer = get_tracer(__name__)


@dataclass
class Request:
    method: str
    path: str
    query: dict[str, str] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    client_address: str | None = None

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        self.headers = {k.lower(): v for k, v in self.headers.items()}

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())

    def json(self) -> Any:
        if not self.body:
            raise ValidationError("Request body must be a JSON object", code="invalid-json")
        try:
            return json.loads(self.body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            raise ValidationError("Malformed JSON payload", code="invalid-json") from None


@dataclass
class Response:
    status: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)

    def json(self) -> Any:
        return json.loads(self.body.decode("utf-8")) if self.body else None


@dataclass
class RequestContext:
    client: str
    attribution: Attribution | None = None

    @property
    def trusted(self) -> bool:
        return self.attribution is Attribution.TRUSTED


def success(data: Any, *, status: int = 200, **extra: Any) -> Response:
    payload = {"success": True, "data": data, **extra}
    return Response(status, json.dumps(payload).encode("utf-8"), {"Content-Type": JSON_CONTENT_TYPE})


def raw_success(data_json: str, *, cache_hit: bool | None = None) -> Response:
    """Envelope around already-serialized data, spliced in verbatim."""
    body = b'{"success": true, "data": ' + data_json.encode("utf-8") + b"}"
    headers = {"Content-Type": JSON_CONTENT_TYPE}
    if cache_hit is not None:
        headers["X-Cache"] = "HIT" if cache_hit else "MISS"
    return Response(200, body, headers)


def failure(exc: GatewayError) -> Response:
    status = exc.status if 400 <= exc.status < 600 else 502
    error = exc.to_dict()
    error["status"] = status
    headers = {"Content-Type": JSON_CONTENT_TYPE}
    if isinstance(exc, RateLimited) and exc.retry_after:
        headers["Retry-After"] = str(exc.retry_after)
    body = json.dumps({"success": False, "error": error}).encode("utf-8")
    return Response(status, body, headers)


def _validated_json(text: str) -> str:
    try:
        json.loads(text)
    except ValueError:
        raise UpstreamRejected(502, text, message="Issue tracker returned malformed JSON") from None
    return text


def _last_page(link_header: str | None) -> int | None:
    if not link_header:
        return None
    match = _LINK_LAST.search(link_header)
    return int(match.group(1)) if match else None


Handler = Callable[..., Response]


@dataclass(frozen=True)
class Route:
    method: str
    pattern: re.Pattern[str]
    handler: str
    write: bool = False


ROUTES: tuple[Route, ...] = (
    Route("GET", re.compile(r"^/api/issues$"), "get_issues"),
    Route("GET", re.compile(r"^/api/issues/(?P<number>\d+)$"), "get_issue"),
    Route("POST", re.compile(r"^/api/submit-bug$"), "submit_bug", write=True),
    Route("PUT", re.compile(r"^/api/issues/(?P<number>\d+)/labels$"), "update_labels", write=True),
    Route("PUT", re.compile(r"^/api/issues/(?P<number>\d+)/column$"), "move_column", write=True),
    Route("GET", re.compile(r"^/api/patch-notes$"), "patch_notes"),
    Route("GET", re.compile(r"^/api/latest-version$"), "latest_version"),
    Route("GET", re.compile(r"^/api/stats$"), "stats"),
    Route("GET", re.compile(r"^/api/health$"), "health"),
)


class Gateway:
    def __init__(
        self,
        upstream: GitHubRestClient,
        *,
        tokens: TokenStore,
        limiter: RateLimiter,
        cache: ResponseCache,
        allowed_origins: list[str],
        client_ip_header: str = "CF-Connecting-IP",
        trusted_proxies: Iterable[str] = (),
        patch_notes: Mapping[str, Any] | None = None,
        product_name: str = "VROS",
        download_url: str | None = None,
        clock: Clock = time.time,
    ) -> None:
        if not allowed_origins:
            raise ValueError("at least one allowed origin is required")
        self.upstream = upstream
        self.tokens = tokens
        self.limiter = limiter
        self.cache = cache
        self.allowed_origins = list(allowed_origins)
        self.client_ip_header = client_ip_header
        self.trusted_proxies = tuple(ipaddress.ip_network(entry, strict=False) for entry in trusted_proxies)
        self.patch_notes = dict(patch_notes) if patch_notes is not None else load_patch_notes()
        self.product_name = product_name
        self.download_url = download_url
        self._clock = clock
        self._secrets = tuple(s for s in (upstream.token,) if s)
        self.logger = get_logger()

    @classmethod
    def from_config(
        cls,
        cfg: GatewayConfig,
        *,
        upstream: GitHubRestClient | None = None,
        clock: Clock = time.time,
    ) -> Gateway:
        if upstream is None:
            repo, token = cfg.require_upstream()
            upstream = GitHubRestClient(
                token=token, repo=repo, base_url=cfg.github_api_url, timeout=cfg.github_timeout
            )
        return cls(
            upstream,
            tokens=TokenStore(
                MemoryStore(cfg.token_max_records, clock=clock),
                prefix=cfg.token_prefix,
                idle_expiry_seconds=cfg.token_idle_expiry_seconds,
                clock=clock,
            ),
            limiter=RateLimiter(
                MemoryStore(cfg.rate_limit_max_clients, clock=clock),
                max_requests=cfg.rate_limit_max_requests,
                window_seconds=cfg.rate_limit_window_seconds,
                clock=clock,
            ),
            cache=ResponseCache(MemoryStore(cfg.cache_max_entries, clock=clock), cfg.cache_ttls),
            allowed_origins=cfg.allowed_origins,
            client_ip_header=cfg.client_ip_header,
            trusted_proxies=cfg.trusted_proxies,
            patch_notes=load_patch_notes(cfg.patch_notes_file),
            product_name=cfg.product_name,
            download_url=cfg.download_url,
            clock=clock,
        )

    # ---- request pipeline ---------------------------------------------
    def cors_headers(self, request: Request) -> dict[str, str]:
        origin = (request.header("Origin") or "").rstrip("/")
        allowed = origin if origin in self.allowed_origins else self.allowed_origins[0]
        return {
            "Access-Control-Allow-Origin": allowed,
            "Access-Control-Allow-Methods": ALLOWED_METHODS,
            "Access-Control-Allow-Headers": ALLOWED_HEADERS,
            "Access-Control-Max-Age": CORS_MAX_AGE,
            "Vary": "Origin",
        }

    def _via_trusted_proxy(self, peer: str | None) -> bool:
        if not peer or not self.trusted_proxies:
            return False
        try:
            address = ipaddress.ip_address(peer)
        except ValueError:
            return False
        return any(address in network for network in self.trusted_proxies)

    def client_address(self, request: Request) -> str:
        """Rate-limit key; forwarding headers count only when a trusted proxy sent them."""
        peer = request.client_address
        if self._via_trusted_proxy(peer):
            direct = (request.header(self.client_ip_header) or "").strip()
            if direct:
                return direct
            forwarded = (request.header("X-Forwarded-For") or "").split(",")[0].strip()
            if forwarded:
                return forwarded
        return peer or "unknown"

    def resolve(self, request: Request) -> tuple[Route, dict[str, str]]:
        for route in ROUTES:
            if route.method != request.method:
                continue
            match = route.pattern.match(request.path)
            if match:
                return route, match.groupdict()
        raise NotFound("Not found")

    def handle(self, request: Request) -> Response:
        start = time.perf_counter()
        cors = self.cors_headers(request)
        ctx = RequestContext(client=self.client_address(request))
        if request.method == "OPTIONS":
            return Response(204, b"", cors)

        with _tracer.start_as_current_span("gateway.request") as span:
            span.set_attribute("http.method", request.method)
            span.set_attribute("http.target", request.path)
            response = self._dispatch(request, ctx)
            span.set_attribute("http.status_code", response.status)

        response.headers.update(cors)
        extra: dict[str, Any] = {"client": ctx.client}
        if ctx.attribution is not None:
            extra["attribution"] = ctx.attribution.value
        if "X-Cache" in response.headers:
            extra["cache"] = response.headers["X-Cache"]
        self.logger.log_request(
            request.method, request.path, response.status, (time.perf_counter() - start) * 1000, **extra
        )
        return response

    def _dispatch(self, request: Request, ctx: RequestContext) -> Response:
        try:
            route, params = self.resolve(request)
            if route.write:
                self._gate(request, ctx)
            handler: Handler = getattr(self, f"_handle_{route.handler}")
            return handler(request, ctx, **params)
        except GatewayError as exc:
            info = classify_error(exc)
            self.logger.debug("request rejected", code=info.category, status=exc.status, path=request.path)
            return failure(exc)
        except Exception as exc:
            self.logger.log_error(
                "unhandled gateway error",
                error=redact(traceback.format_exc(), self._secrets),
                path=request.path,
                error_type=exc.__class__.__name__,
                category=classify_error(exc).category,
            )
            return failure(GatewayError("Internal server error"))

    def _gate(self, request: Request, ctx: RequestContext) -> None:
        if not self.limiter.admit(ctx.client):
            raise RateLimited(retry_after=self.limiter.retry_after(ctx.client))
        ctx.attribution = self.tokens.classify(request.header(TOKEN_HEADER))

    def _invalidate_after_write(self) -> None:
        removed = self.cache.invalidate_issue_reads()
        self.logger.debug("cache invalidated after write", removed=removed)

    # ---- handlers -----------------------------------------------------
    def _handle_get_issues(self, request: Request, ctx: RequestContext) -> Response:
        issue_filter = IssueFilter.from_query(request.query)
        key = issues_key(self.upstream.issues_path(), issue_filter.to_params())
        text, hit = self.cache.get_or_fetch(
            key,
            self.cache.ttls.issues,
            lambda: _validated_json(self.upstream.fetch_issues_raw(issue_filter).text),
        )
        return raw_success(text, cache_hit=hit)

    def _handle_get_issue(self, request: Request, ctx: RequestContext, number: str) -> Response:
        issue_number = int(number)
        text, hit = self.cache.get_or_fetch(
            issue_key(self.upstream.issues_path(issue_number)),
            self.cache.ttls.issues,
            lambda: _validated_json(self.upstream.fetch_issue_raw(issue_number).text),
        )
        return raw_success(text, cache_hit=hit)

    def _handle_submit_bug(self, request: Request, ctx: RequestContext) -> Response:
        report = BugReport.from_payload(request.json())
        body = report.render_body(trusted=ctx.trusted, product=self.product_name)
        issue = self.upstream.create_issue(report.title, body, report.labels(trusted=ctx.trusted))
        self._invalidate_after_write()
        self.logger.log_operation(
            "bug_submitted", issue_number=issue.number, attribution=ctx.attribution.value if ctx.attribution else None
        )
        message = "Bug report submitted successfully"
        data = {"issueNumber": issue.number, "issueUrl": issue.url, "message": message}
        return success(data, status=201, issueNumber=issue.number, issueUrl=issue.url, message=message)

    def _handle_update_labels(self, request: Request, ctx: RequestContext, number: str) -> Response:
        payload = request.json()
        labels = payload.get("labels") if isinstance(payload, dict) else None
        if not isinstance(labels, list):
            raise ValidationError("Labels array required")
        cleaned = self._clean_labels(labels)
        applied = self.upstream.replace_labels(int(number), cleaned)
        self._invalidate_after_write()
        return success({"number": int(number), "labels": applied})

    def _handle_move_column(self, request: Request, ctx: RequestContext, number: str) -> Response:
        payload = request.json()
        raw_column = payload.get("column") if isinstance(payload, dict) else None
        if not isinstance(raw_column, str) or not raw_column.strip():
            raise ValidationError("Field 'column' is required")
        try:
            column = Column.parse(raw_column)
        except ValueError:
            choices = ", ".join(c.value for c in Column)
            raise ValidationError(f"Unknown column '{raw_column}'; expected one of: {choices}") from None
        issue = self.upstream.get_issue(int(number))
        applied = self.upstream.replace_labels(issue.number, to_label_delta(issue.labels, column))
        self._invalidate_after_write()
        return success({"number": issue.number, "column": column.value, "labels": applied})

    def _handle_patch_notes(self, request: Request, ctx: RequestContext) -> Response:
        text, hit = self.cache.get_or_fetch(
            PATCH_NOTES_KEY, self.cache.ttls.static, lambda: json.dumps(self.patch_notes)
        )
        return raw_success(text, cache_hit=hit)

    def _handle_latest_version(self, request: Request, ctx: RequestContext) -> Response:
        text, hit = self.cache.get_or_fetch(
            LATEST_VERSION_KEY,
            self.cache.ttls.version,
            lambda: json.dumps(latest_version(self.patch_notes, download_url=self.download_url)),
        )
        return raw_success(text, cache_hit=hit)

    def _handle_stats(self, request: Request, ctx: RequestContext) -> Response:
        text, hit = self.cache.get_or_fetch(STATS_KEY, self.cache.ttls.stats, self._fetch_stats)
        return raw_success(text, cache_hit=hit)

    def _handle_health(self, request: Request, ctx: RequestContext) -> Response:
        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc).isoformat()
        return success({"status": "ok", "timestamp": now})

    # ---- helpers ------------------------------------------------------
    @staticmethod
    def _clean_labels(labels: list[Any]) -> list[str]:
        if len(labels) > MAX_LABELS:
            raise ValidationError(f"At most {MAX_LABELS} labels are allowed")
        cleaned: list[str] = []
        for label in labels:
            if not isinstance(label, str) or not label.strip():
                raise ValidationError("Labels must be non-empty strings")
            name = label.strip()
            if name not in cleaned:
                cleaned.append(name)
        for prefix in (STATUS_PREFIX, SEVERITY_PREFIX, CATEGORY_PREFIX):
            family = [name for name in cleaned if name.startswith(prefix)]
            if len(family) > 1:
                raise ValidationError(f"At most one '{prefix}*' label is allowed; got {', '.join(family)}")
        return cleaned

    def _fetch_stats(self) -> str:
        """Repository, open-count and closed-list fetched together; any failure fails all."""
        with ThreadPoolExecutor(max_workers=3, thread_name_prefix="issuegate-stats") as pool:
            repo_future = pool.submit(self.upstream.get_repository)
            open_future = pool.submit(
                self.upstream.fetch_issues_raw, IssueFilter(state="open", per_page=1)
            )
            closed_future = pool.submit(
                self.upstream.fetch_issues_raw, IssueFilter(state="closed", per_page=100)
            )
            repo = repo_future.result()
            open_response = open_future.result()
            closed_response = closed_future.result()

        try:
            open_items = json.loads(open_response.text or "[]")
            closed_items = json.loads(closed_response.text or "[]")
        except ValueError:
            raise UpstreamRejected(502, "", message="Issue tracker returned malformed JSON") from None
        if not isinstance(open_items, list) or not isinstance(closed_items, list):
            raise UpstreamRejected(502, "", message="Issue tracker returned an unexpected payload")

        link = next((v for k, v in open_response.headers.items() if k.lower() == "link"), None)
        open_count = _last_page(link)
        if open_count is None:
            open_count = len(open_items)
        stats = {
            "openIssues": open_count,
            "closedIssues": len(closed_items),
            "stars": repo.get("stargazers_count", 0),
            "watchers": repo.get("watchers_count", 0),
            "forks": repo.get("forks_count", 0),
            "avgResolutionTime": average_resolution_time(
                item for item in closed_items if isinstance(item, dict)
            ),
        }
        return json.dumps(stats)


__all__ = [
    "Gateway",
    "ROUTES",
    "Request",
    "RequestContext",
    "Response",
    "Route",
    "TOKEN_HEADER",
    "failure",
    "raw_success",
    "success",
]
