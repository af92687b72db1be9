import os
import tempfile
from pathlib import Path

# Keep config and log files out of the working tree; must run before sales_rollup is imported
_test_dir = Path(tempfile.mkdtemp(prefix='sales_rollup_tests_'))
(_test_dir / 'settings.ini').write_text(
    "[DATABASE]\n"
    "url = sqlite://\n"
    "echo = False\n"
    "\n"
    "[LOGGING]\n"
    "level = WARNING\n"
    f"directory = {_test_dir / 'logs'}\n"
    "console_output = False\n"
    "\n"
    "[BATCH_PROCESS]\n"
    "max_workers = 2\n"
    "\n"
    "[ANALYTICS]\n"
    "top_n = 10\n"
    "outlier_threshold = 2.0\n"
)
os.environ.setdefault('SALES_ROLLUP_CONFIG_DIR', str(_test_dir))
