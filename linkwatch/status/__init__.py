from .server import create_status_app, start_status_server

__all__ = ["create_status_app", "start_status_server"]
