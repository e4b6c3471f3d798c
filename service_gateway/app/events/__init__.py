from .revenue import RequestMeta, RevenueEventLogger

__all__ = ["RequestMeta", "RevenueEventLogger"]
