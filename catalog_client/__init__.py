"""Library Catalog Client - Core Package

This package contains the request-state reconciliation layer of the
library catalog client:
- Borrow / waitlist request coordination (borrow.py)
- Admin health monitoring and control actions (health.py)
- Admin credential resolution and persistence (credentials.py)
- Shared error classification (errors.py)
- Search history recording (search_history.py)
- View lifetimes and periodic work (lifecycle.py)
- In-memory development catalog server (mock_server.py)
- Command line presentation layer (main.py, ui_helpers.py)
"""

__version__ = "1.0.0"
