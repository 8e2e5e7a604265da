"""
Typed wrappers around the news API endpoints.
"""

from newsdash.datasource.base import BaseDataSource
from newsdash.datasource.insights import InsightsSource
from newsdash.datasource.news import NewsSource
from newsdash.datasource.stocks import StockSource
from newsdash.datasource.system import SystemSource

__all__ = [
    "BaseDataSource",
    "InsightsSource",
    "NewsSource",
    "StockSource",
    "SystemSource",
]
