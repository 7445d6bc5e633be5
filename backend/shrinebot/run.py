"""
Development launcher for the shrine bot
"""

import sys
from pathlib import Path

# backend/ holds both the shrinebot and shared packages
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

if __name__ == "__main__":
    from shrinebot.bot import run

    run()
