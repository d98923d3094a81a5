"""Host command surface: a small FastAPI application over the ``Supervisor``."""
