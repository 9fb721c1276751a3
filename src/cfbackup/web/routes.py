"""REST handlers

Thin translation between HTTP and the orchestrator. Every failure is a
BackupError that the app's exception handler turns into a JSON error body.
"""

from typing import List

from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from cfbackup.backup import BackupOrchestrator
from cfbackup.models import ServiceInstance


def _orchestrator(request: Request) -> BackupOrchestrator:
    return request.app.state.orchestrator


def _service(request: Request) -> ServiceInstance:
    params = request.path_params
    return _orchestrator(request).service(params["service_type"], params["service_name"])


async def list_all_backups(request: Request) -> JSONResponse:
    records = await _orchestrator(request).list_all_backups(
        service_type=request.query_params.get("service_type") or None,
        service_name=request.query_params.get("service_name") or None,
    )
    return JSONResponse([record.to_dict() for record in records])


async def list_backups(request: Request) -> JSONResponse:
    record = await _orchestrator(request).list_backups(_service(request))
    return JSONResponse(record.to_dict())


async def get_backup(request: Request) -> JSONResponse:
    record = await _orchestrator(request).get_backup(_service(request), request.path_params["filename"])
    return JSONResponse(record.to_dict())


async def create_backup(request: Request) -> JSONResponse:
    service = _service(request)
    await _orchestrator(request).create_backup(service)
    return JSONResponse(service.to_dict(), status_code=202)


async def download_backup(request: Request) -> StreamingResponse:
    filename = request.path_params["filename"]
    stream = await _orchestrator(request).read_backup(_service(request), filename)
    quoted = filename.replace("\\", "\\\\").replace('"', '\\"')
    return StreamingResponse(
        stream,
        media_type="application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{quoted}"'},
    )


async def delete_backup(request: Request) -> Response:
    await _orchestrator(request).delete_backup(_service(request), request.path_params["filename"])
    return Response(status_code=204)


async def restore_backup(request: Request) -> JSONResponse:
    service = _service(request)
    filename = request.path_params["filename"]
    await _orchestrator(request).restore_backup(service, filename)
    return JSONResponse({**service.to_dict(), "Filename": filename}, status_code=202)


async def list_services(request: Request) -> JSONResponse:
    services = _orchestrator(request).services(request.query_params.get("service_type") or None)
    return JSONResponse([service.to_dict() for service in services])


async def get_state(request: Request) -> JSONResponse:
    state = _orchestrator(request).get_state(_service(request))
    return JSONResponse(state.to_dict())


async def list_states(request: Request) -> JSONResponse:
    return JSONResponse([state.to_dict() for state in _orchestrator(request).states()])


def create_api_routes() -> List[Route]:
    """Routes of the /api/v1 surface."""
    base = "/backup/{service_type}/{service_name}"
    return [
        Route("/backups", endpoint=list_all_backups, methods=["GET"]),
        Route(base, endpoint=list_backups, methods=["GET"]),
        Route(base, endpoint=create_backup, methods=["POST"]),
        Route(base + "/{filename}", endpoint=get_backup, methods=["GET"]),
        Route(base + "/{filename}", endpoint=delete_backup, methods=["DELETE"]),
        Route(base + "/{filename}/download", endpoint=download_backup, methods=["GET"]),
        Route("/restore/{service_type}/{service_name}/{filename}", endpoint=restore_backup, methods=["POST"]),
        Route("/services", endpoint=list_services, methods=["GET"]),
        Route("/state/{service_type}/{service_name}", endpoint=get_state, methods=["GET"]),
        Route("/states", endpoint=list_states, methods=["GET"]),
    ]
