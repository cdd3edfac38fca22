"""
Jobs package - built-in periodic triggers
"""
from jobs.scheduler import JobScheduler

__all__ = ['JobScheduler']
