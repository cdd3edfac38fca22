"""
Routes - Flask blueprints for the /api surface
"""
