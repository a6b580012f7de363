"""API router exposing LED control, device and schedule endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from . import schemas
from .state import AppState
from .unifi.devices import AccessPoint
from .unifi.unifi import (
    AuthenticationFailedError,
    InvalidConfigurationError,
    UniFiAPIError,
)
from .unifi.utils import logger

router = APIRouter(prefix="/api", tags=["devices"])


def get_app_state(request: Request) -> AppState:
    state = getattr(request.app.state, "app_state", None)
    if state is None:
        raise HTTPException(
            status.HTTP_503_SERVICE_UNAVAILABLE, detail="Application is starting."
        )
    return state


StateDep = Annotated[AppState, Depends(get_app_state)]


def _raise_for_api_error(exc: UniFiAPIError) -> None:
    if isinstance(exc, InvalidConfigurationError):
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if isinstance(exc, AuthenticationFailedError):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    raise HTTPException(status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc


def _device_to_schema(device: AccessPoint) -> schemas.AccessPointStatus:
    return schemas.AccessPointStatus.model_validate(device.as_dict())


def _config_to_schema(state: AppState) -> schemas.ControllerConfigResponse:
    config = state.config
    return schemas.ControllerConfigResponse(
        base_url=config.base_url,
        site=config.site,
        username=config.username,
        accept_invalid_certificates=config.accept_invalid_certificates,
        configured=config.is_configured,
        has_password=bool(config.password),
    )


def _schedule_not_found(schedule_id: str) -> HTTPException:
    return HTTPException(
        status.HTTP_404_NOT_FOUND, detail=f"Schedule {schedule_id} not found."
    )


# Configuration ---------------------------------------------------------------


@router.get(
    "/config", response_model=schemas.ControllerConfigResponse, tags=["config"]
)
def get_config(state: StateDep) -> schemas.ControllerConfigResponse:
    return _config_to_schema(state)


@router.put(
    "/config", response_model=schemas.ControllerConfigResponse, tags=["config"]
)
async def update_config(
    payload: schemas.ControllerConfigUpdate, state: StateDep
) -> schemas.ControllerConfigResponse:
    await state.update_config(payload)
    return _config_to_schema(state)


# Devices ---------------------------------------------------------------------


@router.get("/devices", response_model=schemas.DeviceListResponse)
def list_devices(state: StateDep) -> schemas.DeviceListResponse:
    return schemas.DeviceListResponse(
        devices=[_device_to_schema(device) for device in state.devices]
    )


@router.post("/devices/refresh", response_model=schemas.DeviceListResponse)
async def refresh_devices(state: StateDep) -> schemas.DeviceListResponse:
    refreshed = await state.refresh_devices()
    return schemas.DeviceListResponse(
        devices=[_device_to_schema(device) for device in state.devices],
        refreshed=refreshed,
    )


@router.put("/devices/{device_id}/led", response_model=schemas.LEDToggleResponse)
async def toggle_device_led(
    device_id: str, payload: schemas.LEDToggleRequest, state: StateDep
) -> schemas.LEDToggleResponse:
    if not any(device.device_id == device_id for device in state.devices):
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Device not found.")
    try:
        await state.toggle_device_led(device_id, payload.enabled)
    except UniFiAPIError as exc:
        _raise_for_api_error(exc)
    return schemas.LEDToggleResponse(
        target=device_id, enabled=payload.enabled, status="success"
    )


@router.put("/led", response_model=schemas.LEDToggleResponse)
async def toggle_all_leds(
    payload: schemas.LEDToggleRequest, state: StateDep
) -> schemas.LEDToggleResponse:
    try:
        await state.toggle_all_leds(payload.enabled)
    except UniFiAPIError as exc:
        _raise_for_api_error(exc)
    return schemas.LEDToggleResponse(
        target="site", enabled=payload.enabled, status="success"
    )


# Schedules -------------------------------------------------------------------


@router.get(
    "/schedules", response_model=schemas.ScheduleListResponse, tags=["schedules"]
)
def list_schedules(state: StateDep) -> schemas.ScheduleListResponse:
    return schemas.ScheduleListResponse(schedules=state.schedules)


@router.post(
    "/schedules",
    response_model=schemas.Schedule,
    status_code=status.HTTP_201_CREATED,
    tags=["schedules"],
)
async def create_schedule(
    payload: schemas.ScheduleCreateRequest, state: StateDep
) -> schemas.Schedule:
    return await state.create_schedule(payload)


@router.put(
    "/schedules/{schedule_id}", response_model=schemas.Schedule, tags=["schedules"]
)
async def update_schedule(
    schedule_id: str, payload: schemas.ScheduleUpdateRequest, state: StateDep
) -> schemas.Schedule:
    try:
        return await state.update_schedule(schedule_id, payload)
    except KeyError as exc:
        raise _schedule_not_found(schedule_id) from exc


@router.put(
    "/schedules/{schedule_id}/enabled",
    response_model=schemas.Schedule,
    tags=["schedules"],
)
async def set_schedule_enabled(
    schedule_id: str, payload: schemas.EnabledRequest, state: StateDep
) -> schemas.Schedule:
    try:
        return await state.set_schedule_enabled(schedule_id, payload.enabled)
    except KeyError as exc:
        raise _schedule_not_found(schedule_id) from exc


@router.delete(
    "/schedules/{schedule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["schedules"],
)
async def delete_schedule(schedule_id: str, state: StateDep) -> Response:
    try:
        await state.delete_schedule(schedule_id)
    except KeyError as exc:
        raise _schedule_not_found(schedule_id) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Scheduler -------------------------------------------------------------------


@router.get(
    "/scheduler/timers", response_model=schemas.TimerListResponse, tags=["schedules"]
)
def list_timers(state: StateDep) -> schemas.TimerListResponse:
    return schemas.TimerListResponse(
        timers=[
            schemas.ArmedTimerInfo(
                schedule_id=timer.schedule_id,
                rule_id=timer.rule_id,
                edge=timer.edge.value,
                fire_at=timer.fire_at,
            )
            for timer in state.scheduler.timers
        ]
    )


@router.post("/system/wake", response_model=schemas.WakeResponse, tags=["system"])
async def notify_wake(state: StateDep) -> schemas.WakeResponse:
    """Rebuild timers now, for sleep hooks that know the host just resumed."""
    timers = state.scheduler.rebuild_timers()
    logger.bind(armed=len(timers)).info("Rebuilt timers on wake request")
    return schemas.WakeResponse(rebuilt=True, armed=len(timers))
