"""
HTTP front end for submitting crawl jobs and fetching results.
"""

from .server import ApiServer, create_app, validate_crawl_request

__all__ = ['ApiServer', 'create_app', 'validate_crawl_request']
