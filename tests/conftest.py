import sys
from pathlib import Path

# backend/ holds the importable packages (shrinebot, shared); put it on the path
# so the tests run from any working directory without an install.
BACKEND_DIR = Path(__file__).resolve().parents[1] / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))
