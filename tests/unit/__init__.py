"""
Unit Tests Package for the ParkReserve client

Each module covers one component in isolation; collaborators are
replaced with unittest.mock or the in-memory implementations.
"""

import sys
from pathlib import Path

# Add the project root to Python path for imports
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))
