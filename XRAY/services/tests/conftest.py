import sys
from pathlib import Path

# Repository root on sys.path for namespace imports (XRAY.*).
ROOT = Path(__file__).resolve().parents[3]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
