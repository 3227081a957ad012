"""HTTP endpoint module for devcontrol.

Provides the FastAPI application that exposes the command gateway to
authenticated callers, along with the token authentication that guards
each route.
"""
