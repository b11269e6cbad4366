"""HTTP API for TeamForge."""

from .gateway import APIGateway, EnqueueRequest, EnqueueResponse, build_gateway, create_app

__all__ = ["APIGateway", "EnqueueRequest", "EnqueueResponse", "build_gateway", "create_app"]
