"""Radio Program Pipeline - Program API service.

FastAPI service for program generation jobs, lock status and the
regeneration check.
"""

__all__: list[str] = []
