import os
import tempfile

# Keep config/runtime files written during tests out of the user's home.
os.environ.setdefault("BOOKMARKSYNC_HOME", tempfile.mkdtemp(prefix="bookmarksync-tests-"))
