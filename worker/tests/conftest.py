import sys
from pathlib import Path

# Ensure `src` package and the shared test fakes are importable when running pytest from the worker directory.
ROOT = Path(__file__).resolve().parents[1]
TESTS = Path(__file__).resolve().parent
for path in (ROOT, TESTS):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))
