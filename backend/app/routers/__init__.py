from app.routers import admin, health, modules, paths, submodules

__all__ = [
    "admin",
    "health",
    "modules",
    "paths",
    "submodules",
]
