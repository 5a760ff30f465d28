"""Main application entry point for the FastAPI application.

Run with ``uvicorn shopguard.main:app``.
"""

from shopguard.core.application import create_application
from shopguard.core.initialization import initialize_application

# Initialize the application
initialize_application()

# Create the FastAPI application
app = create_application()
