"""API router subpackage for the restoration tracker backend.

Submodules:
    - treatments: Upload, list and delete the treatment units of a project.
    - logger: Change the API log level at runtime.

Each module exposes its own APIRouter for composition in the application's
main FastAPI instance.
"""
