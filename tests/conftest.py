import sys
import time
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


class FakeWfile:
    """Stands in for a request handler's socket file."""

    def __init__(self, broken=False):
        self.broken = broken
        self.chunks = []

    def write(self, data):
        if self.broken:
            raise BrokenPipeError("viewer went away")
        self.chunks.append(data)

    def flush(self):
        return

    def getvalue(self):
        return b"".join(self.chunks)


class FakeObserver:
    instances = []

    def __init__(self):
        self.scheduled = []
        self.started = False
        self.stopped = False
        self.joined = False
        FakeObserver.instances.append(self)

    def schedule(self, handler, path=".", recursive=False):
        self.handler = handler
        self.scheduled.append((path, recursive))

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def join(self):
        self.joined = True


def wait_for(predicate, timeout=5.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


