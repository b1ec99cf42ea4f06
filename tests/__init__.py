import os
import tempfile

# Keep config, logs and buffers of test runs out of the user's home.
os.environ.setdefault("QA_AUTOMATION_HOME", tempfile.mkdtemp(prefix="qa-automation-tests-"))
