"""
HTTP control surface for the crawl job service.
"""

from .server import create_app

__all__ = ['create_app']
