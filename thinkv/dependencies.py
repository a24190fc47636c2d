"""
FastAPI dependency providers. The objects live on ``app.state`` (set up at
startup in main.py); tests swap them through ``app.dependency_overrides``.
"""
from fastapi import Depends, Request

from thinkv.channels import ChannelService


def get_store(request: Request):
    return request.app.state.store


def get_telemetry(request: Request):
    return request.app.state.telemetry


def get_reconciler(request: Request):
    return request.app.state.reconciler


def get_views(request: Request):
    return request.app.state.views


def get_channel_service(store=Depends(get_store), telemetry=Depends(get_telemetry)) -> ChannelService:
    return ChannelService(telemetry, store)
