"""
Repositories package

Each repository wraps the queries for one concern so services never build
SQLAlchemy queries themselves:
- activity_repository.py
- scraper_repository.py
- etc.

Usage:
    from repositories.activity_repository import ActivityRepository
    running = ActivityRepository.get_running()
"""
