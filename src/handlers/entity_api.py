"""
API Gateway Lambda entry point for entity services.

Routes are registered explicitly at cold start::

    router = Router()
    register_entity_routes(router, orders_service)          # /orders, /orders/{id}
    router.add_route("GET", "/health", health_check)
    handler = make_lambda_handler(router)

Implements, per registered entity:
- GET    /{plural}          list (query string: search, searchAttributes, attributes, limit, cursor)
- POST   /{plural}/query    query an access pattern (body: EntityQuery)
- GET    /{plural}/{id}     get (query string: attributes, other key attributes)
- POST   /{plural}          create
- PATCH  /{plural}/{id}     update
- DELETE /{plural}/{id}     delete
"""

import asyncio
import base64
import json
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Pattern, Tuple

from ..entity.selections import flatten_selection_paths
from ..entity.service import EntityService
from ..utils.cases import to_slug
from ..utils.errors import AppError, ErrorCode, handle_error
from ..utils.logging import StructuredLogger, get_correlation_id
from ..utils.objects import json_default

STATUS_BY_ERROR_CODE = {
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.ALREADY_EXISTS: 409,
    ErrorCode.CONFIGURATION_ERROR: 500,
    ErrorCode.DATABASE_ERROR: 500,
    ErrorCode.INTERNAL_ERROR: 500,
}


@dataclass
class Request:
    """What a route handler gets from the API Gateway event."""

    method: str
    path: str
    path_params: Dict[str, str] = field(default_factory=dict)
    query_params: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    event: Dict[str, Any] = field(default_factory=dict)


RouteHandler = Callable[[Request], Awaitable[Any]]


def _compile_path(path: str) -> Pattern[str]:
    pattern = re.sub(r"\{(\w+)\}", r"(?P<\1>[^/]+)", path.rstrip("/") or "/")
    return re.compile(f"^{pattern}/?$")


@dataclass
class Route:
    method: str
    path: str
    handler: RouteHandler
    status_code: int = 200
    pattern: Pattern[str] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        self.pattern = _compile_path(self.path)

    def match(self, method: str, path: str) -> Optional[Dict[str, str]]:
        if method.upper() != self.method:
            return None
        found = self.pattern.match(path)
        return found.groupdict() if found else None


class Router:
    """Explicit route table; first registered match wins."""

    def __init__(self) -> None:
        self.routes: List[Route] = []

    def add_route(
        self, method: str, path: str, handler: RouteHandler, status_code: int = 200
    ) -> Route:
        route = Route(method=method, path=path, handler=handler, status_code=status_code)
        self.routes.append(route)
        return route

    def resolve(self, method: str, path: str) -> Optional[Tuple[Route, Dict[str, str]]]:
        for route in self.routes:
            params = route.match(method, path)
            if params is not None:
                return route, params
        return None


def _split(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


def _public_query(query: Dict[str, Any]) -> Dict[str, Any]:
    """Normalized query as returned to clients (selection tree flattened to paths)."""
    public = dict(query)
    if isinstance(public.get("attributes"), dict):
        public["attributes"] = flatten_selection_paths(public["attributes"])
    return public


def _page_response(result: Dict[str, Any]) -> Dict[str, Any]:
    cursor = result.get("cursor")
    return {
        "data": result.get("data", []),
        "cursor": json.dumps(cursor, default=json_default) if cursor else None,
        "query": _public_query(result.get("query", {})),
    }


def register_entity_routes(
    router: Router, service: EntityService, base_path: Optional[str] = None
) -> Router:
    """Register the default CRUD routes of ``service`` on ``router``."""
    base = (base_path or "/" + to_slug(service.get_entity_schema().entity_name_plural)).rstrip("/")
    entity_name = service.get_entity_name()

    def identifiers_for(request: Request) -> Dict[str, Any]:
        return service.extract_entity_identifiers(  # type: ignore[return-value]
            {**request.query_params, **request.path_params}, for_access_pattern="primary"
        )

    async def list_records(request: Request) -> Any:
        params = request.query_params
        query: Dict[str, Any] = {}
        if params.get("search"):
            query["search"] = params["search"]
        if params.get("searchAttributes"):
            query["searchAttributes"] = params["searchAttributes"]
        if params.get("attributes"):
            query["attributes"] = _split(params["attributes"])
        if params.get("limit"):
            try:
                query["limit"] = int(params["limit"])
            except ValueError:
                raise AppError(ErrorCode.INVALID_INPUT, "limit must be an integer", {"limit": params["limit"]})
        if params.get("cursor"):
            try:
                query["cursor"] = json.loads(params["cursor"])
            except ValueError:
                raise AppError(ErrorCode.INVALID_INPUT, "cursor is malformed")
        return _page_response(await service.list(query))

    async def query_records(request: Request) -> Any:
        if not isinstance(request.body, dict):
            raise AppError(ErrorCode.INVALID_INPUT, "Query body must be an object")
        return _page_response(await service.query(request.body))  # type: ignore[arg-type]

    async def get_record(request: Request) -> Any:
        record = await service.get(
            identifiers_for(request), selections=_split(request.query_params.get("attributes"))
        )
        if record is None:
            raise AppError(ErrorCode.NOT_FOUND, f"{entity_name} not found", {"id": request.path_params["id"]})
        return record

    async def create_record(request: Request) -> Any:
        if not isinstance(request.body, dict):
            raise AppError(ErrorCode.INVALID_INPUT, f"{entity_name} payload must be an object")
        return await service.create(request.body)

    async def update_record(request: Request) -> Any:
        if not isinstance(request.body, dict):
            raise AppError(ErrorCode.INVALID_INPUT, f"{entity_name} payload must be an object")
        return await service.update(identifiers_for(request), request.body)

    async def delete_record(request: Request) -> Any:
        deleted = await service.delete(identifiers_for(request))
        if deleted is None:
            raise AppError(ErrorCode.NOT_FOUND, f"{entity_name} not found", {"id": request.path_params["id"]})
        return deleted

    router.add_route("GET", base, list_records)
    router.add_route("POST", f"{base}/query", query_records)
    router.add_route("GET", f"{base}/{{id}}", get_record)
    router.add_route("POST", base, create_record, status_code=201)
    router.add_route("PATCH", f"{base}/{{id}}", update_record)
    router.add_route("DELETE", f"{base}/{{id}}", delete_record)
    return router


def _response(status_code: int, body: Any) -> Dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(body, default=json_default),
    }


def _parse_body(event: Dict[str, Any]) -> Any:
    raw = event.get("body")
    if not raw:
        return None
    if event.get("isBase64Encoded"):
        raw = base64.b64decode(raw).decode("utf-8")
    try:
        return json.loads(raw)
    except ValueError:
        raise AppError(ErrorCode.INVALID_INPUT, "Request body must be valid JSON")


def make_lambda_handler(router: Router) -> Callable[[Dict[str, Any], Any], Dict[str, Any]]:
    """Build the Lambda handler dispatching API Gateway proxy events to ``router``."""

    def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
        logger = StructuredLogger(__name__, get_correlation_id(event))

        request_context = event.get("requestContext") or {}
        method = (event.get("httpMethod") or request_context.get("http", {}).get("method") or "").upper()
        path = event.get("path") or event.get("rawPath") or "/"

        resolved = router.resolve(method, path)
        if resolved is None:
            logger.warning("No route found", method=method, path=path)
            return _response(
                404, {"errorCode": ErrorCode.NOT_FOUND, "message": f"No route for {method} {path}"}
            )

        route, path_params = resolved
        logger.info("Handling request", method=method, path=path, route=route.path)

        try:
            request = Request(
                method=method,
                path=path,
                path_params=path_params,
                query_params=dict(event.get("queryStringParameters") or {}),
                body=_parse_body(event),
                event=event,
            )
            result = asyncio.run(route.handler(request))
            return _response(route.status_code, result)
        except AppError as e:
            logger.warning(f"Request failed: {e.message}", errorCode=e.error_code)
            return _response(STATUS_BY_ERROR_CODE.get(e.error_code, 400), handle_error(e))
        except Exception as e:
            logger.error(f"Unhandled error: {str(e)}", errorType=type(e).__name__)
            return _response(500, handle_error(e))

    return handler
