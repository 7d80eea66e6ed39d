# =============================================================================
# costa_core/__init__.py
# Costa Back-Office Core
# =============================================================================
"""
Core package for the Costa back-office app.

Subpackages:
    offline  - catalog cache, pending-write queue, connectivity, sync engine
    data     - Supabase remote client
    losses   - loss-entry cart
    ui       - Streamlit status widgets
"""

__version__ = "1.4.0"
