from .runner import AgentRunner
from .crawl_runner import CrawlFailure, CrawlRunner
from .nodes import JobFailure, RunContext

__all__ = ['AgentRunner', 'CrawlFailure', 'CrawlRunner', 'JobFailure', 'RunContext']
