"""Point every engine at SQLite before project modules create them"""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["DATABASE_URL_SYNC"] = "sqlite://"
os.environ.setdefault("BLOB_STORE_PATH", "/tmp/filevault-test-blobs")
