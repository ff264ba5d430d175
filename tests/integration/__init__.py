"""
Integration Tests Package for the ParkReserve client

This package contains integration tests that verify the components work
together correctly:
1. Reservation lifecycle through the application service
2. Session handling across the HTTP client and the auth service
3. Composition of the whole application in offline mode
"""

import sys
from pathlib import Path

# Add the project root to Python path for imports
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))
