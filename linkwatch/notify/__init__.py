from .alert_router import TELEGRAM_API, AlertRouter

__all__ = ["TELEGRAM_API", "AlertRouter"]
