#!/usr/bin/env python3
"""
POS Printer - background agent that prints Supabase ledger jobs on a USB
ESC/POS thermal printer.

Usage:
    python app.py                  # run the agent (SUPABASE_URL/SUPABASE_KEY required)
    python app.py --test-print     # print a sample receipt and exit
    python app.py --health-port 5003
"""

import sys
from pathlib import Path

# Add the project root to Python path
sys.path.insert(0, str(Path(__file__).parent))

from pos_printer.agent import main

if __name__ == "__main__":
    sys.exit(main())
