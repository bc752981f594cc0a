"""
Crawl Service

Queue-driven web crawl workers with an HTTP front end for submitting jobs
and retrieving their results.
"""

__version__ = "1.0.0"
__description__ = "Queue-driven web crawler with rate limiting and robots.txt compliance"
