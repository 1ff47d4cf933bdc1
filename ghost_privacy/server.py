"""
HTTP and MCP server using fastmcp.

Session routes are plain HTTP endpoints for browsers; operator actions are
exposed as MCP tools on the same server.
"""

import asyncio
from typing import Any, Callable, Dict

from fastmcp import FastMCP
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from .api import ApiResponse, build_api
from .models.errors import GhostSessionError
from .services.cleanup import SweepScheduler
from .utils.config import config
from .utils.health_check import get_health_status
from .utils.json_utils import parse_json_object
from .utils.logging_config import get_logger

logger = get_logger(__name__)

# Initialize FastMCP application
mcp = FastMCP('Ghost Sessions')
api = build_api()
scheduler = SweepScheduler(api.registry)


def _to_response(result: ApiResponse) -> Response:
    if result.body is None:
        return Response(status_code=result.status_code, headers=result.headers)
    return JSONResponse(result.body, status_code=result.status_code, headers=result.headers)


async def _dispatch(request: Request, handler: Callable[..., ApiResponse], *args: Any) -> Response:
    """Answer preflight directly; run the blocking handler off the event loop."""
    if request.method == 'OPTIONS':
        return _to_response(api.preflight())
    return _to_response(await asyncio.to_thread(handler, *args))


async def _payload(request: Request):
    if request.method == 'OPTIONS':
        return None
    return parse_json_object(await request.body())


@mcp.custom_route('/create-session', methods=['POST', 'OPTIONS'])
async def create_session(request: Request) -> Response:
    return await _dispatch(request, api.create_session, await _payload(request), dict(request.headers))


@mcp.custom_route('/validate-session', methods=['POST', 'OPTIONS'])
async def validate_session(request: Request) -> Response:
    return await _dispatch(request, api.validate_session, await _payload(request))


@mcp.custom_route('/extend-session', methods=['POST', 'OPTIONS'])
async def extend_session(request: Request) -> Response:
    return await _dispatch(request, api.extend_session, await _payload(request))


@mcp.custom_route('/delete-session', methods=['POST', 'OPTIONS'])
async def delete_session(request: Request) -> Response:
    return await _dispatch(request, api.delete_session, await _payload(request))


@mcp.custom_route('/detect-honeypot', methods=['POST', 'OPTIONS'])
async def detect_honeypot(request: Request) -> Response:
    return await _dispatch(request, api.detect_honeypot, await _payload(request))


@mcp.custom_route('/cleanup-sessions', methods=['POST', 'OPTIONS'])
async def cleanup_sessions(request: Request) -> Response:
    return await _dispatch(request, api.cleanup_sessions)


@mcp.custom_route('/rotate-honeytokens', methods=['POST', 'OPTIONS'])
async def rotate_honeytokens_route(request: Request) -> Response:
    return await _dispatch(request, api.rotate_honeytokens)


@mcp.custom_route('/health', methods=['GET'])
async def health(request: Request) -> Response:
    status = await asyncio.to_thread(get_health_status, api.registry.store)
    healthy = all(component.get('healthy', False) for component in status.values())
    return JSONResponse({'healthy': healthy, 'components': status}, status_code=200 if healthy else 503)


@mcp.tool()
def rotate_honeytokens() -> Dict[str, Any]:
    """Generate today's honeytokens for planting in documents, code or decoy pages.

    Returns:
        Dictionary with the UTC date and the generated tokens

    Raises:
        Exception: If rotation fails
    """
    try:
        today, tokens = api.classifier.rotate_honeytokens()
        return {'date': today, 'tokens': tokens}

    except Exception as e:
        logger.error(f'Unexpected error in MCP honeytoken rotation: {e}')
        raise Exception(f'Honeytoken rotation failed: {e}')


@mcp.tool()
def cleanup_expired_sessions() -> Dict[str, int]:
    """Delete expired sessions and stale rate-limit buckets now.

    Returns:
        Dictionary with deleted session and bucket counts

    Raises:
        Exception: If the sweep fails
    """
    try:
        result = api.registry.sweep()
        logger.debug(f'MCP cleanup removed {result.deleted_sessions} sessions')
        return {'deleted_sessions': result.deleted_sessions, 'deleted_buckets': result.deleted_buckets}

    except GhostSessionError as e:
        logger.error(f'Session store error in MCP cleanup: {e}')
        raise Exception(f'Cleanup failed: {e}')
    except Exception as e:
        logger.error(f'Unexpected error in MCP cleanup: {e}')
        raise Exception(f'Cleanup failed: {e}')


if __name__ == '__main__':
    scheduler.start()
    try:
        mcp.run(transport=config.server.transport, host=config.server.host, port=config.server.port)
    finally:
        scheduler.stop(timeout=5)
        api.classifier.dispatcher.shutdown(wait=False)
