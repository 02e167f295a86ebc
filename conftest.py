import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent

PYTHON_PATHS = [
    ROOT / "packages" / "siteplan",
    ROOT / "packages" / "safety",
    ROOT / "packages" / "audit",
    ROOT / "packages" / "publisher",
]

for path in PYTHON_PATHS:
    sys.path.insert(0, str(path))
