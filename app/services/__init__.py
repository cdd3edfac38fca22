"""
Services - long-running workers and the business logic behind the API routes
"""
