"""
FastAPI application implementing the Docker volume plugin protocol.

Docker only looks at the `Err` field of a response, so every failure,
including malformed requests and unexpected exceptions, is returned with
HTTP 200 and a message in `Err`.
"""

import logging

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from rbd_volume import __version__
from rbd_volume.api.models import (
    ActivateResponse,
    CapabilitiesResponse,
    Capability,
    CreateRequest,
    ErrorResponse,
    GetResponse,
    ListResponse,
    MountpointResponse,
    MountRequest,
    NameRequest,
    VolumeInfo,
)
from rbd_volume.api.services.volume_service import VolumeService
from rbd_volume.exceptions import RbdVolumeError

logger = logging.getLogger(__name__)

router = APIRouter()


def get_service(request: Request) -> VolumeService:
    return request.app.state.volume_service


def _error(method: str, exc: Exception) -> str:
    logger.error("%s failed: %s", method, exc)
    return str(exc)


@router.post("/Plugin.Activate", response_model=ActivateResponse)
def plugin_activate() -> ActivateResponse:
    """
    Return which Docker plugin APIs this plugin supports.
    """
    logger.debug("Plugin.Activate")
    return ActivateResponse(Implements=["VolumeDriver"])


@router.post("/VolumeDriver.Create", response_model=ErrorResponse)
def volume_create(body: CreateRequest, service: VolumeService = Depends(get_service)) -> ErrorResponse:
    """
    Register a volume. Nothing is mapped until it is mounted.
    """
    # Opts carry the cephx secret and are never logged.
    logger.debug("VolumeDriver.Create name=%s opts=%s", body.Name, sorted((body.Opts or {}).keys()))
    try:
        service.create(body.Name, body.Opts)
    except RbdVolumeError as e:
        return ErrorResponse(Err=_error("create", e))
    return ErrorResponse()


@router.post("/VolumeDriver.Remove", response_model=ErrorResponse)
def volume_remove(body: NameRequest, service: VolumeService = Depends(get_service)) -> ErrorResponse:
    """
    Remove a volume that is no longer mounted.
    """
    logger.debug("VolumeDriver.Remove name=%s", body.Name)
    try:
        service.remove(body.Name)
    except RbdVolumeError as e:
        return ErrorResponse(Err=_error("remove", e))
    return ErrorResponse()


@router.post("/VolumeDriver.Path", response_model=MountpointResponse)
def volume_path(body: NameRequest, service: VolumeService = Depends(get_service)) -> MountpointResponse:
    """
    Return the mountpoint of a volume.
    """
    logger.debug("VolumeDriver.Path name=%s", body.Name)
    try:
        mountpoint = service.path(body.Name)
    except RbdVolumeError as e:
        return MountpointResponse(Err=_error("path", e))
    return MountpointResponse(Mountpoint=mountpoint)


@router.post("/VolumeDriver.Mount", response_model=MountpointResponse)
def volume_mount(body: MountRequest, service: VolumeService = Depends(get_service)) -> MountpointResponse:
    """
    A container is starting and needs the volume.
    """
    logger.debug("VolumeDriver.Mount name=%s id=%s", body.Name, body.ID)
    try:
        mountpoint = service.mount(body.Name, body.ID)
    except RbdVolumeError as e:
        return MountpointResponse(Err=_error("mount", e))
    return MountpointResponse(Mountpoint=mountpoint)


@router.post("/VolumeDriver.Unmount", response_model=ErrorResponse)
def volume_unmount(body: MountRequest, service: VolumeService = Depends(get_service)) -> ErrorResponse:
    """
    A container stopped using the volume.
    """
    logger.debug("VolumeDriver.Unmount name=%s id=%s", body.Name, body.ID)
    try:
        service.unmount(body.Name, body.ID)
    except RbdVolumeError as e:
        return ErrorResponse(Err=_error("unmount", e))
    return ErrorResponse()


@router.post("/VolumeDriver.Get", response_model=GetResponse)
def volume_get(body: NameRequest, service: VolumeService = Depends(get_service)) -> GetResponse:
    logger.debug("VolumeDriver.Get name=%s", body.Name)
    try:
        volume = service.get(body.Name)
    except RbdVolumeError as e:
        return GetResponse(Err=_error("get", e))
    return GetResponse(
        Volume=VolumeInfo(Name=volume["name"], Mountpoint=volume["mountpoint"], Status=volume["status"])
    )


@router.post("/VolumeDriver.List", response_model=ListResponse)
def volume_list(service: VolumeService = Depends(get_service)) -> ListResponse:
    logger.debug("VolumeDriver.List")
    volumes = [VolumeInfo(Name=v["name"], Mountpoint=v["mountpoint"]) for v in service.list()]
    return ListResponse(Volumes=volumes)


@router.post("/VolumeDriver.Capabilities", response_model=CapabilitiesResponse)
def volume_capabilities(service: VolumeService = Depends(get_service)) -> CapabilitiesResponse:
    logger.debug("VolumeDriver.Capabilities")
    return CapabilitiesResponse(Capabilities=Capability(Scope=service.capabilities()["scope"]))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies are reported through Err."""
    message = f"invalid request to {request.url.path}: {exc.errors()}"
    logger.error(message)
    return JSONResponse(status_code=200, content={"Err": message})


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler."""
    logger.exception("Unhandled error (path=%s)", request.url.path)
    return JSONResponse(status_code=200, content={"Err": f"{type(exc).__name__}: {exc}"})


def create_app(service: VolumeService) -> FastAPI:
    """
    Build the plugin application around a loaded volume service.
    """
    app = FastAPI(
        title="Ceph RBD Volume Plugin",
        description="Docker volume plugin for Ceph RBD images",
        version=__version__,
    )
    app.state.volume_service = service
    app.include_router(router)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
    return app
