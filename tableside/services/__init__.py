"""
Services package for the Tableside client core.

This package contains the stateful components organized by concern:
- auth: session resolution (who is signed in, with which role)
- routing: render decisions for guarded and public-only routes
- tables: staff table reservation lifecycle and table analytics
- orders: customer order-status feed
- backend: Supabase implementation of the backend data service
"""

# Import services explicitly where needed (e.g. `from tableside.services.tables import TableReservationManager`).
__all__: list[str] = []
