import os
import sys
from pathlib import Path

# must be set before keras is first imported
os.environ['TF_CPP_MIN_LOG_LEVEL'] = '3'
os.environ.setdefault('KERAS_BACKEND', 'tensorflow')

# Add src to Python path
src_path = str(Path(__file__).parent.parent / "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
