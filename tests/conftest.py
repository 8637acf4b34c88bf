import os
import tempfile

# settings are cached on first import, so pin them before any project module loads
os.environ.setdefault("EXPENSES_DATA_DIR", tempfile.mkdtemp(prefix="expenses-test-"))
os.environ.setdefault("EXPENSES_CATEGORY_BUDGETS", '{"groceries": 100, "housing": null}')
os.environ.setdefault("EXPENSES_TIMEZONE", "UTC")
